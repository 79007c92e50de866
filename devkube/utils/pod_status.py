"""Pod 状态推导

与 kubectl get pods 的 STATUS 列保持一致的推导逻辑，
以及等待循环使用的状态分类表。
"""
from typing import Optional

# 节点失联时 kubelet 写入的 Pod reason
NODE_UNREACHABLE_POD_REASON = "NodeLost"

# 需要继续等待的状态
WAIT_STATUS = frozenset([
    "ContainerCreating",
    "PodInitializing",
    "Pending",
    "Terminating",
])

# 无法自行恢复的状态，遇到直接报错
CRITICAL_STATUS = frozenset([
    "Error",
    "Unknown",
    "ImagePullBackOff",
    "CrashLoopBackOff",
    "RunContainerError",
    "ErrImagePull",
    "CreateContainerConfigError",
    "InvalidImageName",
])

# 可以作为候选的状态
OKAY_STATUS = frozenset([
    "Completed",
    "Running",
])


def is_critical_status(status: str) -> bool:
    return status in CRITICAL_STATUS


def _terminated_code(terminated, prefix: str = "") -> str:
    """没有 reason 的 terminated 状态按信号或退出码编码"""
    if terminated.signal:
        return f"{prefix}Signal:{terminated.signal}"
    return f"{prefix}ExitCode:{terminated.exit_code or 0}"


def _init_status(pod) -> Optional[str]:
    """
    扫描 init 容器，返回 Init: 前缀的状态
    所有 init 容器都成功退出时返回 None
    """
    statuses = pod.status.init_container_statuses or []
    total = len((pod.spec.init_containers if pod.spec else None) or [])

    for i, container in enumerate(statuses):
        state = container.state
        terminated = state.terminated if state else None
        waiting = state.waiting if state else None

        if terminated is not None and terminated.exit_code == 0:
            continue
        if terminated is not None:
            # 初始化失败
            if not terminated.reason:
                return _terminated_code(terminated, prefix="Init:")
            return "Init:" + terminated.reason
        if waiting is not None and waiting.reason and waiting.reason != "PodInitializing":
            return "Init:" + waiting.reason
        return f"Init:{i}/{total}"

    return None


def get_pod_status(pod) -> str:
    """
    根据 Pod 快照推导状态字符串
    同一个快照总是得到同一个结果，不访问集群
    """
    status = pod.status
    reason = status.phase or ""
    if status.reason:
        reason = status.reason

    init_reason = _init_status(pod)
    if init_reason is not None:
        reason = init_reason
    else:
        has_running = False
        overridden = False

        # 倒序遍历: 只取第一个有问题的容器，即最后声明的那个
        for container in reversed(status.container_statuses or []):
            state = container.state
            waiting = state.waiting if state else None
            terminated = state.terminated if state else None
            running = state.running if state else None

            if container.ready and running is not None:
                has_running = True
            if overridden:
                continue

            if waiting is not None and waiting.reason:
                reason = waiting.reason
                overridden = True
            elif terminated is not None and terminated.reason:
                reason = terminated.reason
                overridden = True
            elif terminated is not None:
                reason = _terminated_code(terminated)
                overridden = True

        # 还有容器在跑时，不让已结束的 sidecar 掩盖 Running
        if reason == "Completed" and has_running:
            reason = "Running"

    if pod.metadata.deletion_timestamp is not None and status.reason == NODE_UNREACHABLE_POD_REASON:
        reason = "Unknown"
    elif pod.metadata.deletion_timestamp is not None:
        reason = "Terminating"

    return reason
