"""命令共用: 把选择器解析成目标容器"""
from dataclasses import replace

from devkube.utils.discovery import PodSelector, resolve_newest
from devkube.utils.pod_status import get_pod_status
from devkube.utils.ui import console, print_warning, select_container, select_pod


def _is_empty(selector: PodSelector) -> bool:
    return not (selector.pod_name or selector.label_selector or selector.image_selector)


def choose_pod_interactively(kube, selector: PodSelector):
    """没有任何选择条件时，让用户从 Running 的 Pod 中挑一个"""
    namespace = selector.namespace or kube.namespace
    pods = [p for p in kube.list_pods(namespace) if get_pod_status(p) == "Running"]
    if not pods:
        print_warning(f"命名空间 {namespace} 中没有运行中的 Pod")
        return None

    pod = select_pod(pods, message="请选择 Pod")
    if pod is None:
        return None
    return replace(selector, pod_name=pod.metadata.name)


def resolve_target(kube, selector: PodSelector, interactive: bool = True):
    """
    等待并返回 (pod, container)
    用户在选择界面返回上一级时返回 None
    """
    if _is_empty(selector) and interactive:
        selector = choose_pod_interactively(kube, selector)
        if selector is None:
            return None

    with console.status(f"[cyan]正在等待 {selector.describe()} 的 Pod 就绪...[/cyan]") as status:
        def _pick(containers):
            status.stop()
            if not interactive:
                return None
            return select_container(containers, message="请选择容器")

        return resolve_newest(kube, selector, pick_container=_pick)
