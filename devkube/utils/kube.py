"""Kubernetes API 调用封装"""
import ipaddress
import logging
import os
import subprocess
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.kube_config import KUBE_CONFIG_DEFAULT_LOCATION
from kubernetes.stream import portforward, stream

from devkube.utils.errors import ConfigurationError
from devkube.utils.ui import print_success

logger = logging.getLogger(__name__)

# 授予当前用户集群权限的 ClusterRoleBinding 名称
CLUSTER_ROLE_BINDING_NAME = "devkube-user"

# 本地集群的 context 名称
LOCAL_CONTEXTS = ("minikube", "docker-desktop", "docker-for-desktop")

_PRIVATE_IP_BLOCKS = [
    ipaddress.ip_network(cidr) for cidr in (
        "127.0.0.0/8",     # IPv4 loopback
        "10.0.0.0/8",      # RFC1918
        "172.16.0.0/12",   # RFC1918
        "192.168.0.0/16",  # RFC1918
        "169.254.0.0/16",  # IPv4 link-local
        "::1/128",         # IPv6 loopback
        "fe80::/10",       # IPv6 link-local
        "fc00::/7",        # IPv6 unique local
    )
]


# ──────────────────────── 集群访问接口 ────────────────────────

class ClusterAPI(Protocol):
    """
    发现循环和会话依赖的集群能力
    生产实现是 KubeClient，测试里用内存版的 FakeCluster
    """
    namespace: str
    current_context: str
    auth_provider: Optional[str]

    def list_pods(self, namespace: str, label_selector: str = "") -> List[client.V1Pod]: ...

    def read_pod(self, name: str, namespace: str) -> client.V1Pod: ...

    def read_namespace(self, name: str) -> client.V1Namespace: ...

    def create_namespace(self, name: str) -> client.V1Namespace: ...

    def read_cluster_role_binding(self, name: str): ...

    def create_cluster_role_binding(self, body: dict): ...

    def read_deployment(self, name: str, namespace: str) -> client.V1Deployment: ...

    def read_service_account(self, name: str, namespace: str) -> client.V1ServiceAccount: ...

    def patch_service_account(self, name: str, namespace: str, body: dict): ...

    def open_stream(self, pod_name: str, namespace: str, container: str,
                    command: Optional[List[str]] = None, tty: bool = False, stdin: bool = True): ...

    def open_port_forward(self, pod_name: str, namespace: str, ports: List[int]): ...

    def read_log_stream(self, pod_name: str, namespace: str, container: Optional[str] = None,
                        follow: bool = False, tail_lines: Optional[int] = None) -> Iterable[bytes]: ...


# ──────────────────────── 生产实现 ────────────────────────

def _kubeconfig_path(kubeconfig: Optional[str] = None) -> str:
    """KUBECONFIG 可能是多个路径，取第一个"""
    path = kubeconfig or KUBE_CONFIG_DEFAULT_LOCATION
    return os.path.expanduser(path.split(os.pathsep)[0])


def _detect_auth_provider(kubeconfig: Optional[str], user_name: str) -> Optional[str]:
    """从 kubeconfig 的 user 条目中识别认证插件 (gcp 等)"""
    path = _kubeconfig_path(kubeconfig)
    if not user_name or not os.path.exists(path):
        return None
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.debug("读取 kubeconfig 失败: %s", e)
        return None

    for entry in data.get("users") or []:
        if entry.get("name") != user_name:
            continue
        user = entry.get("user") or {}
        provider = (user.get("auth-provider") or {}).get("name")
        if provider:
            return provider
        # 新版 GKE 使用 exec 插件替代 auth-provider
        command = (user.get("exec") or {}).get("command") or ""
        if "gke-gcloud-auth-plugin" in command:
            return "gcp"
    return None


class KubeClient:
    """基于官方 kubernetes 客户端的 ClusterAPI 实现"""

    def __init__(self, namespace: Optional[str] = None, context: Optional[str] = None,
                 kubeconfig: Optional[str] = None):
        self.configuration = client.Configuration()
        self.current_context = ""
        self.auth_provider = None
        context_namespace = None

        try:
            config.load_kube_config(
                config_file=kubeconfig,
                context=context,
                client_configuration=self.configuration,
            )
            contexts, active = config.list_kube_config_contexts(config_file=kubeconfig)
            if context:
                active = next((c for c in contexts if c["name"] == context), active)
            ctx = active.get("context") or {}
            self.current_context = active.get("name", "")
            context_namespace = ctx.get("namespace")
            self.auth_provider = _detect_auth_provider(kubeconfig, ctx.get("user", ""))
        except config.ConfigException:
            # 在集群内运行时回退到 ServiceAccount
            config.load_incluster_config(client_configuration=self.configuration)
            logger.debug("使用 in-cluster 配置")

        self.namespace = namespace or context_namespace or "default"
        self.api_client = client.ApiClient(self.configuration)
        self.core_v1 = client.CoreV1Api(self.api_client)
        self.apps_v1 = client.AppsV1Api(self.api_client)
        self.rbac_v1 = client.RbacAuthorizationV1Api(self.api_client)

    def is_local_kubernetes(self) -> bool:
        return is_local_kubernetes(self.current_context)

    def _stream_api(self) -> client.CoreV1Api:
        # stream() 会临时替换 api_client.request，流式请求使用独立的 ApiClient
        return client.CoreV1Api(client.ApiClient(self.configuration))

    def list_pods(self, namespace: str, label_selector: str = "") -> List[client.V1Pod]:
        return self.core_v1.list_namespaced_pod(namespace, label_selector=label_selector).items

    def read_pod(self, name: str, namespace: str) -> client.V1Pod:
        return self.core_v1.read_namespaced_pod(name, namespace)

    def read_namespace(self, name: str) -> client.V1Namespace:
        return self.core_v1.read_namespace(name)

    def create_namespace(self, name: str) -> client.V1Namespace:
        body = client.V1Namespace(metadata=client.V1ObjectMeta(name=name))
        return self.core_v1.create_namespace(body)

    def read_cluster_role_binding(self, name: str):
        return self.rbac_v1.read_cluster_role_binding(name)

    def create_cluster_role_binding(self, body: dict):
        return self.rbac_v1.create_cluster_role_binding(body)

    def read_deployment(self, name: str, namespace: str) -> client.V1Deployment:
        return self.apps_v1.read_namespaced_deployment(name, namespace)

    def read_service_account(self, name: str, namespace: str) -> client.V1ServiceAccount:
        return self.core_v1.read_namespaced_service_account(name, namespace)

    def patch_service_account(self, name: str, namespace: str, body: dict):
        return self.core_v1.patch_namespaced_service_account(name, namespace, body)

    def open_stream(self, pod_name: str, namespace: str, container: str,
                    command: Optional[List[str]] = None, tty: bool = False, stdin: bool = True):
        """打开 attach 流，给定 command 时改为 exec"""
        api = self._stream_api()
        kwargs = dict(
            container=container,
            stdin=stdin,
            stdout=True,
            stderr=not tty,
            tty=tty,
            _preload_content=False,
        )
        if command:
            return stream(api.connect_get_namespaced_pod_exec, pod_name, namespace, command=command, **kwargs)
        return stream(api.connect_get_namespaced_pod_attach, pod_name, namespace, **kwargs)

    def open_port_forward(self, pod_name: str, namespace: str, ports: List[int]):
        api = self._stream_api()
        return portforward(
            api.connect_get_namespaced_pod_portforward,
            pod_name,
            namespace,
            ports=",".join(str(p) for p in ports),
        )

    def read_log_stream(self, pod_name: str, namespace: str, container: Optional[str] = None,
                        follow: bool = False, tail_lines: Optional[int] = None) -> Iterable[bytes]:
        kwargs = {"follow": follow, "_preload_content": False}
        if container:
            kwargs["container"] = container
        if tail_lines is not None:
            kwargs["tail_lines"] = tail_lines
        resp = self.core_v1.read_namespaced_pod_log(pod_name, namespace, **kwargs)
        try:
            for chunk in resp.stream():
                yield chunk
        finally:
            resp.release_conn()


# ──────────────────────── 工具函数 ────────────────────────

def is_local_kubernetes(context: str) -> bool:
    """context 是否属于本地集群"""
    return context in LOCAL_CONTEXTS


def is_private_ip(ip) -> bool:
    """判断地址是否为私有/回环/链路本地地址"""
    try:
        addr = ipaddress.ip_address(str(ip).strip("[]"))
    except ValueError:
        return False
    return any(addr in block for block in _PRIVATE_IP_BLOCKS if addr.version == block.version)


def run_command(cmd: List[str], timeout: int = 30) -> Tuple[int, str, str]:
    """
    执行外部命令
    返回 (returncode, stdout, stderr)
    """
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return 1, "", "命令执行超时"
    except FileNotFoundError:
        return 1, "", f"未找到 {cmd[0]} 命令，请确认已安装并在 PATH 中"


def get_gcloud_account() -> str:
    """通过 gcloud 获取当前登录账号，失败时返回空字符串"""
    rc, stdout, stderr = run_command(
        ["gcloud", "config", "list", "account", "--format", "value(core.account)"]
    )
    if rc != 0:
        logger.debug("gcloud 执行失败: %s", stderr.strip())
        return ""
    return stdout.strip()


# ──────────────────────── 准备工作 ────────────────────────

def ensure_namespace(kube: ClusterAPI, namespace: Optional[str] = None) -> None:
    """确保命名空间存在，不存在则创建"""
    namespace = namespace or kube.namespace
    try:
        kube.read_namespace(namespace)
        return
    except ApiException as e:
        if e.status != 404:
            raise

    try:
        kube.create_namespace(namespace)
    except ApiException as e:
        # 并发创建时对方已经建好了
        if e.status == 409:
            return
        raise
    print_success(f"已创建命名空间: {namespace}")


def ensure_cluster_role_binding(kube: ClusterAPI, account_lookup=get_gcloud_account) -> None:
    """
    在 GKE 上为当前 gcloud 账号创建 cluster-admin 绑定
    本地集群直接跳过；绑定已存在时不做任何检查
    """
    if is_local_kubernetes(kube.current_context):
        return

    try:
        kube.read_cluster_role_binding(CLUSTER_ROLE_BINDING_NAME)
        return
    except ApiException as e:
        if e.status != 404:
            raise

    if kube.auth_provider != "gcp":
        return

    username = account_lookup()
    if not username:
        raise ConfigurationError("无法确定 Google Cloud 用户名，请确认已通过 gcloud 登录")

    body = {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRoleBinding",
        "metadata": {"name": CLUSTER_ROLE_BINDING_NAME},
        "subjects": [
            {"kind": "User", "name": username, "apiGroup": "rbac.authorization.k8s.io"},
        ],
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": "cluster-admin",
        },
    }
    try:
        kube.create_cluster_role_binding(body)
    except ApiException as e:
        if e.status != 409:
            raise
        return
    print_success(f"已为 {username} 创建 ClusterRoleBinding: {CLUSTER_ROLE_BINDING_NAME}")


def get_pod_selector_from_deployment(kube: ClusterAPI, deployment: str, namespace: Optional[str] = None) -> str:
    """从 Deployment 的 matchLabels 拼出 key=value,... 形式的标签选择器"""
    namespace = namespace or kube.namespace
    deploy = kube.read_deployment(deployment, namespace)

    selector = deploy.spec.selector if deploy.spec else None
    match_labels: Dict[str, str] = (selector.match_labels if selector else None) or {}
    if not match_labels:
        raise ConfigurationError(f"Deployment {deployment} 没有定义 matchLabels")

    return ",".join(f"{k}={v}" for k, v in match_labels.items())


def get_pods_from_deployment(kube: ClusterAPI, deployment: str, namespace: Optional[str] = None) -> List[client.V1Pod]:
    """获取 Deployment 下的所有 Pod"""
    namespace = namespace or kube.namespace
    label_selector = get_pod_selector_from_deployment(kube, deployment, namespace)
    return kube.list_pods(namespace, label_selector=label_selector)


def add_pull_secrets_to_service_account(kube: ClusterAPI, pull_secrets: List[str],
                                        namespace: Optional[str] = None,
                                        service_account: str = "default") -> bool:
    """
    把镜像拉取密钥补充到 ServiceAccount 上
    已存在的不重复添加；返回是否发生了更新
    """
    namespace = namespace or kube.namespace
    try:
        account = kube.read_service_account(service_account, namespace)
    except ApiException as e:
        logger.error("找不到命名空间 %s 中的 ServiceAccount '%s': %s", namespace, service_account, e.reason)
        return False

    existing = [s.name for s in (account.image_pull_secrets or [])]
    missing = [name for name in pull_secrets if name not in existing]
    if not missing:
        return False

    body = {"imagePullSecrets": [{"name": name} for name in existing + missing]}
    kube.patch_service_account(service_account, namespace, body)
    return True
