"""
测试公共夹具

FakeCluster 是 ClusterAPI 的内存实现，FakeClock 让等待循环不真正睡眠。
"""
from datetime import datetime, timedelta, timezone

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True, scope="session")
def _isolated_log_dir(tmp_path_factory):
    """会话诊断日志写到临时目录"""
    from devkube.utils import log
    log._log_dir = str(tmp_path_factory.mktemp("logs"))


# ──────────────────────── Pod 构造 ────────────────────────

def running_state():
    return client.V1ContainerState(running=client.V1ContainerStateRunning(started_at=BASE_TIME))


def waiting_state(reason=None):
    return client.V1ContainerState(waiting=client.V1ContainerStateWaiting(reason=reason))


def terminated_state(exit_code=0, reason=None, signal=None):
    return client.V1ContainerState(
        terminated=client.V1ContainerStateTerminated(exit_code=exit_code, reason=reason, signal=signal)
    )


def container_status(name="app", state=None, ready=True, image="app:v1"):
    return client.V1ContainerStatus(
        name=name,
        image=image,
        image_id="",
        ready=ready,
        restart_count=0,
        state=state if state is not None else running_state(),
    )


def make_pod(name="web-1", namespace="default", containers=(("app", "app:v1"),), statuses=None,
             init_containers=(), init_statuses=None, phase="Running", reason=None,
             created=None, deleted=False, labels=None, tty=False, stdin=False):
    spec = client.V1PodSpec(
        containers=[client.V1Container(name=n, image=img, tty=tty, stdin=stdin) for n, img in containers],
        init_containers=[client.V1Container(name=n, image=img) for n, img in init_containers] or None,
    )
    if statuses is None:
        statuses = [container_status(n, image=img) for n, img in containers]
    metadata = client.V1ObjectMeta(
        name=name,
        namespace=namespace,
        labels=labels if labels is not None else {"app": "web"},
        creation_timestamp=created or BASE_TIME,
        deletion_timestamp=BASE_TIME if deleted else None,
    )
    status = client.V1PodStatus(
        phase=phase,
        reason=reason,
        container_statuses=statuses,
        init_container_statuses=init_statuses,
    )
    return client.V1Pod(metadata=metadata, spec=spec, status=status)


def minutes(n):
    return BASE_TIME + timedelta(minutes=n)


# ──────────────────────── 假集群 ────────────────────────

def _labels_match(pod, label_selector):
    if not label_selector:
        return True
    labels = pod.metadata.labels or {}
    for term in label_selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key.strip()) != value.strip():
            return False
    return True


class FakeCluster:
    """内存版 ClusterAPI"""

    def __init__(self, pods=None, namespace="default", current_context="gke_dev", auth_provider=None):
        self.namespace = namespace
        self.current_context = current_context
        self.auth_provider = auth_provider
        self.pods = list(pods or [])
        # 设置后每次 list_pods 依次返回一个快照，最后一个保持不变
        self.snapshots = None
        self.list_calls = []
        self.namespaces = set()
        self.created_namespaces = []
        self.cluster_role_bindings = {}
        self.deployments = {}
        self.service_accounts = {}
        self.patches = []
        self.stream_factory = None
        self.stream_calls = []
        self.tunnel_factory = None
        self.port_forward_calls = []
        self.log_chunks = []

    def list_pods(self, namespace, label_selector=""):
        self.list_calls.append((namespace, label_selector))
        pods = self.pods
        if self.snapshots:
            pods = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        return [p for p in pods if p.metadata.namespace == namespace and _labels_match(p, label_selector)]

    def read_pod(self, name, namespace):
        for pod in self.pods:
            if pod.metadata.name == name and pod.metadata.namespace == namespace:
                return pod
        raise ApiException(status=404, reason="Not Found")

    def read_namespace(self, name):
        if name not in self.namespaces:
            raise ApiException(status=404, reason="Not Found")
        return client.V1Namespace(metadata=client.V1ObjectMeta(name=name))

    def create_namespace(self, name):
        if name in self.namespaces:
            raise ApiException(status=409, reason="Conflict")
        self.namespaces.add(name)
        self.created_namespaces.append(name)
        return client.V1Namespace(metadata=client.V1ObjectMeta(name=name))

    def read_cluster_role_binding(self, name):
        if name not in self.cluster_role_bindings:
            raise ApiException(status=404, reason="Not Found")
        return self.cluster_role_bindings[name]

    def create_cluster_role_binding(self, body):
        name = body["metadata"]["name"]
        if name in self.cluster_role_bindings:
            raise ApiException(status=409, reason="Conflict")
        self.cluster_role_bindings[name] = body
        return body

    def read_deployment(self, name, namespace):
        if (namespace, name) not in self.deployments:
            raise ApiException(status=404, reason="Not Found")
        return self.deployments[(namespace, name)]

    def read_service_account(self, name, namespace):
        if (namespace, name) not in self.service_accounts:
            raise ApiException(status=404, reason="Not Found")
        return self.service_accounts[(namespace, name)]

    def patch_service_account(self, name, namespace, body):
        self.patches.append((name, namespace, body))
        account = self.service_accounts[(namespace, name)]
        account.image_pull_secrets = [client.V1LocalObjectReference(name=s["name"]) for s in body["imagePullSecrets"]]
        return account

    def open_stream(self, pod_name, namespace, container, command=None, tty=False, stdin=True):
        self.stream_calls.append((pod_name, namespace, container, command, tty))
        return self.stream_factory()

    def open_port_forward(self, pod_name, namespace, ports):
        self.port_forward_calls.append((pod_name, namespace, list(ports)))
        return self.tunnel_factory(ports)

    def read_log_stream(self, pod_name, namespace, container=None, follow=False, tail_lines=None):
        for chunk in self.log_chunks:
            yield chunk


class FakeClock:
    """sleep 只推进时间"""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cluster():
    return FakeCluster()
