"""Pod 列表 / 等待镜像就绪 / 初始化命名空间"""
from typing import List

from devkube.utils.discovery import PodSelector, resolve_pods
from devkube.utils.kube import (
    add_pull_secrets_to_service_account, ensure_cluster_role_binding, ensure_namespace, get_pods_from_deployment,
)
from devkube.utils.pod_status import CRITICAL_STATUS, get_pod_status
from devkube.utils.ui import console, print_info, print_pods_table, print_success, print_warning


def list_pods(kube, namespace: str = None, label_selector: str = "", deployment: str = None):
    """列出 Pod 及推导后的状态，并提示异常 Pod"""
    namespace = namespace or kube.namespace
    print_info(f"正在获取 {namespace} 命名空间的 Pods...")
    console.print()

    if deployment:
        pods = get_pods_from_deployment(kube, deployment, namespace)
    else:
        pods = kube.list_pods(namespace, label_selector=label_selector)
    if not pods:
        print_warning("当前命名空间下没有任何 Pod")
        return

    pods = sorted(pods, key=lambda p: p.metadata.name)
    print_pods_table(pods, title=f"Pods ({namespace})")

    broken = [(p.metadata.name, get_pod_status(p)) for p in pods if get_pod_status(p) in CRITICAL_STATUS]
    if broken:
        console.print()
        for name, status in broken:
            print_warning(f"{name} 处于 {status}，需要人工处理")


def wait_for_pods(kube, selector: PodSelector):
    """等待所有使用指定镜像的 Pod 进入 Running"""
    with console.status(f"[cyan]正在等待 {selector.describe()} 的 Pod 就绪...[/cyan]"):
        pods = resolve_pods(kube, selector)

    if not pods:
        print_warning("没有找到使用这些镜像的 Running Pod")
        return pods

    print_success(f"{len(pods)} 个 Pod 已就绪")
    print_pods_table(pods, title="就绪的 Pods")
    return pods


def init_cluster(kube, namespace: str = None, pull_secrets: List[str] = None):
    """确保命名空间和 ClusterRoleBinding 存在，并补充镜像拉取密钥"""
    namespace = namespace or kube.namespace
    ensure_namespace(kube, namespace)
    ensure_cluster_role_binding(kube)
    if pull_secrets:
        if add_pull_secrets_to_service_account(kube, pull_secrets, namespace):
            print_success(f"已把 {', '.join(pull_secrets)} 添加到 default ServiceAccount")
        else:
            print_info("镜像拉取密钥无需更新")
    print_success(f"命名空间 {namespace} 已准备就绪")
