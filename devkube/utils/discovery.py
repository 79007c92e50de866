"""
Pod 发现与等待

把用户给出的选择器 (标签 / 镜像 / Pod 名 / 容器名) 解析成一个已就绪的容器。
两个等待循环都是阻塞轮询: 睡眠 -> 列出 Pod -> 判断 -> 睡眠，
每轮从剩余预算中扣除两个间隔。
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from kubernetes import client

from devkube.utils.errors import (
    ConfigurationError, CriticalPodStatusError, NoMatchingPodError, PodWaitTimeoutError,
)
from devkube.utils.kube import ClusterAPI
from devkube.utils.pod_status import get_pod_status, is_critical_status

logger = logging.getLogger(__name__)

# 默认最长等待时间 (秒)
DEFAULT_MAX_WAIT = 120
# 轮询间隔 (秒)
WAIT_INTERVAL = 1.0
# 按镜像查找时，没找到 Pod 也至少等待这么久
MIN_WAIT = 60.0
# 按标签查找时，超过这个时间仍没有候选 Pod 就判定为不存在
NO_MATCH_GRACE = 60.0


@dataclass(frozen=True)
class PodSelector:
    """一次解析所用的选择条件"""
    namespace: Optional[str] = None
    label_selector: str = ""
    image_selector: Tuple[str, ...] = field(default_factory=tuple)
    pod_name: Optional[str] = None
    container_name: Optional[str] = None
    max_wait: float = DEFAULT_MAX_WAIT

    def describe(self) -> str:
        if self.pod_name:
            return f"pod={self.pod_name}"
        return _describe_selector(self.label_selector, self.image_selector)


def _image_matches(image: str, image_names: Sequence[str]) -> bool:
    """镜像列表为空时匹配任意镜像"""
    return not image_names or image in image_names


def _has_image(pod: client.V1Pod, image_names: Sequence[str]) -> bool:
    return any(_image_matches(c.image, image_names) for c in pod.spec.containers or [])


def _created(pod: client.V1Pod) -> float:
    ts = pod.metadata.creation_timestamp
    return ts.timestamp() if ts else 0.0


def _describe_selector(label_selector: str, image_names: Sequence[str]) -> str:
    """错误信息里使用的选择器描述，包含标签和镜像"""
    parts = []
    if label_selector:
        parts.append(label_selector)
    if image_names:
        parts.append("image=" + ",".join(image_names))
    return " ".join(parts) or "<all>"


# ──────────────────────── 按镜像查找全部 Pod ────────────────────────

def _collect_pods_with_image(pods: List[client.V1Pod], image_names: Sequence[str]) -> Tuple[List[client.V1Pod], bool]:
    """
    返回 (匹配的 Running Pod, 是否需要继续等待)
    只要有一个匹配的容器还没就绪，本轮结果作废
    """
    found = []
    for pod in pods:
        status = get_pod_status(pod)
        for container in pod.spec.containers or []:
            if not _image_matches(container.image, image_names):
                continue
            if is_critical_status(status):
                raise CriticalPodStatusError(pod.metadata.name, status)
            if status == "Completed":
                # 已经运行结束，忽略这个 Pod
                break
            if status != "Running":
                logger.debug("Pod %s 状态 %s，继续等待", pod.metadata.name, status)
                return [], True
            found.append(pod)
            break
    return found, False


def get_running_pods_with_image(kube: ClusterAPI, image_names: Sequence[str], namespace: Optional[str] = None,
                                max_waiting: float = DEFAULT_MAX_WAIT, label_selector: str = "",
                                interval: float = WAIT_INTERVAL, min_wait: float = MIN_WAIT,
                                sleep: Callable[[float], None] = time.sleep) -> List[client.V1Pod]:
    """等待并返回所有使用指定镜像且处于 Running 的 Pod"""
    namespace = namespace or kube.namespace

    while max_waiting >= 0:
        sleep(interval)

        pods = kube.list_pods(namespace, label_selector=label_selector)
        if pods:
            found, wait = _collect_pods_with_image(pods, image_names)
            if not wait and (found or min_wait <= 0):
                return found

        sleep(interval)
        max_waiting -= interval * 2
        min_wait -= interval * 2

    raise PodWaitTimeoutError(_describe_selector(label_selector, image_names), namespace)


# ──────────────────────── 按标签查找最新 Pod ────────────────────────

def select_newest_pod(pods: List[client.V1Pod], image_selector: Sequence[str] = ()) -> Optional[client.V1Pod]:
    """创建时间最新且满足镜像过滤的 Pod，时间相同时取先出现的"""
    selected = None
    for pod in pods:
        if selected is not None and _created(pod) <= _created(selected):
            continue
        if image_selector and not _has_image(pod, image_selector):
            continue
        selected = pod
    return selected


def get_newest_running_pod(kube: ClusterAPI, label_selector: str, image_selector: Sequence[str] = (),
                           namespace: Optional[str] = None, max_waiting: float = DEFAULT_MAX_WAIT,
                           interval: float = WAIT_INTERVAL, no_match_grace: float = NO_MATCH_GRACE,
                           sleep: Callable[[float], None] = time.sleep,
                           clock: Callable[[], float] = time.monotonic) -> client.V1Pod:
    """等待标签选择器下最新的 Pod 进入 Running 并返回"""
    namespace = namespace or kube.namespace
    start = clock()

    while True:
        sleep(interval)

        pods = kube.list_pods(namespace, label_selector=label_selector)
        selected = select_newest_pod(pods, image_selector)
        if selected is not None:
            status = get_pod_status(selected)
            if status == "Running":
                return selected
            if is_critical_status(status):
                raise CriticalPodStatusError(selected.metadata.name, status)
            logger.debug("Pod %s 状态 %s，继续等待", selected.metadata.name, status)
        elif clock() - start > no_match_grace:
            raise NoMatchingPodError(_describe_selector(label_selector, image_selector), namespace)

        sleep(interval)
        max_waiting -= interval * 2
        if max_waiting <= 0:
            break

    raise PodWaitTimeoutError(_describe_selector(label_selector, image_selector), namespace)


# ──────────────────────── 解析入口 ────────────────────────

def select_container(pod: client.V1Pod, selector: PodSelector,
                     pick_container: Optional[Callable[[List[client.V1Container]], Optional[client.V1Container]]] = None
                     ) -> client.V1Container:
    """在 Pod 中选出目标容器"""
    containers = pod.spec.containers or []
    if not containers:
        raise ConfigurationError(f"Pod {pod.metadata.name} 中没有容器")

    if selector.container_name:
        for container in containers:
            if container.name == selector.container_name:
                return container
        raise ConfigurationError(f"Pod {pod.metadata.name} 中没有名为 {selector.container_name} 的容器")

    if len(containers) == 1:
        return containers[0]

    if selector.image_selector:
        for container in containers:
            if container.image in selector.image_selector:
                return container

    if pick_container is not None:
        picked = pick_container(containers)
        if picked is not None:
            return picked

    return containers[0]


def _read_named_pod(kube: ClusterAPI, selector: PodSelector, namespace: str) -> client.V1Pod:
    pod = kube.read_pod(selector.pod_name, namespace)
    status = get_pod_status(pod)
    if is_critical_status(status):
        raise CriticalPodStatusError(pod.metadata.name, status)
    return pod


def resolve_pods(kube: ClusterAPI, selector: PodSelector, **kwargs) -> List[client.V1Pod]:
    """解析出所有满足选择器的 Running Pod"""
    namespace = selector.namespace or kube.namespace
    if selector.pod_name:
        return [_read_named_pod(kube, selector, namespace)]

    return get_running_pods_with_image(
        kube,
        selector.image_selector,
        namespace=namespace,
        max_waiting=selector.max_wait,
        label_selector=selector.label_selector,
        **kwargs,
    )


def resolve_newest(kube: ClusterAPI, selector: PodSelector, pick_container=None,
                   **kwargs) -> Tuple[client.V1Pod, client.V1Container]:
    """解析出一个已就绪的 (Pod, 容器)"""
    namespace = selector.namespace or kube.namespace
    if selector.pod_name:
        pod = _read_named_pod(kube, selector, namespace)
    else:
        pod = get_newest_running_pod(
            kube,
            selector.label_selector,
            selector.image_selector,
            namespace=namespace,
            max_waiting=selector.max_wait,
            **kwargs,
        )

    container = select_container(pod, selector, pick_container)
    logger.debug("已选中 %s/%s", pod.metadata.name, container.name)
    return pod, container
