"""devkube 异常定义"""
from typing import Optional


class DevKubeError(Exception):
    """所有可预期失败的基类，CLI 层统一捕获并打印"""


class ConfigurationError(DevKubeError):
    """配置或集群对象不满足要求 (如 Deployment 未定义 matchLabels)"""


class CriticalPodStatusError(DevKubeError):
    """Pod 处于无法自行恢复的状态，立即放弃等待"""

    def __init__(self, pod_name: Optional[str], status: str):
        self.pod_name = pod_name
        self.status = status
        if pod_name:
            msg = f"Pod '{pod_name}' 无法启动 (状态: {status})"
        else:
            msg = f"选中的 Pod 无法启动 (状态: {status})"
        super().__init__(msg)


class PodWaitTimeoutError(DevKubeError):
    """等待时间耗尽仍未找到就绪的 Pod"""

    def __init__(self, selector: str, namespace: str):
        self.selector = selector
        self.namespace = namespace
        super().__init__(f"等待选择器为 '{selector}' 的 Pod 超时 (命名空间: {namespace})")


class NoMatchingPodError(DevKubeError):
    """初始宽限期内没有任何 Pod 满足选择器"""

    def __init__(self, selector: str, namespace: str):
        self.selector = selector
        self.namespace = namespace
        super().__init__(f"在命名空间 {namespace} 中找不到选择器为 '{selector}' 的 Pod")


class SessionTransportError(DevKubeError):
    """已建立的会话 (attach / port-forward) 连接中断"""
