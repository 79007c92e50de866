import io
import json
import os
import socket
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
import urllib3
from kubernetes.client.rest import ApiException
from kubernetes.stream.ws_client import ERROR_CHANNEL
from websocket import WebSocketConnectionClosedException

from devkube.utils.errors import ConfigurationError, SessionTransportError
from devkube.utils.session import (
    ForwardedPort, PortForwarder, attach, iter_log_lines, parse_ports, resolve_addresses,
)
from tests.conftest import FakeCluster, make_pod


# ──────────────────────── attach / exec ────────────────────────

class FakeStream:
    """模拟 kubernetes WSClient 的读写接口"""

    def __init__(self, stdout_chunks=(), stderr_chunks=(), error="", fail_on_update=None, keep_open=False):
        self.stdout_chunks = list(stdout_chunks)
        self.stderr_chunks = list(stderr_chunks)
        self.error = error
        self.fail_on_update = fail_on_update
        self.keep_open = keep_open
        self.closed = False
        self.written = []

    def is_open(self):
        return not self.closed and bool(self.stdout_chunks or self.stderr_chunks or self.fail_on_update or self.keep_open)

    def update(self, timeout=0):
        if self.fail_on_update is not None:
            raise self.fail_on_update

    def peek_stdout(self):
        return self.stdout_chunks[0] if self.stdout_chunks else ""

    def read_stdout(self):
        return self.stdout_chunks.pop(0)

    def peek_stderr(self):
        return self.stderr_chunks[0] if self.stderr_chunks else ""

    def read_stderr(self):
        return self.stderr_chunks.pop(0)

    def read_channel(self, channel):
        return self.error if channel == ERROR_CHANNEL else ""

    def write_stdin(self, data):
        self.written.append(data)

    def write_channel(self, channel, data):
        self.written.append((channel, data))

    def close(self):
        self.closed = True


def _exit_status(code):
    return json.dumps({
        "status": "Failure",
        "reason": "NonZeroExitCode",
        "details": {"causes": [{"reason": "ExitCode", "message": str(code)}]},
    })


class TestAttach:

    def _run(self, stream, command=None, pod=None):
        cluster = FakeCluster()
        cluster.stream_factory = lambda: stream
        pod = pod or make_pod(tty=True, stdin=True)
        stdout, stderr = io.StringIO(), io.StringIO()
        rc = attach(cluster, pod, pod.spec.containers[0], command=command,
                    stdin=io.StringIO(), stdout=stdout, stderr=stderr)
        return rc, cluster, stdout, stderr

    def test_exec_relays_output_and_returns_success(self):
        stream = FakeStream(stdout_chunks=["hello\n"], stderr_chunks=["oops\n"],
                            error=json.dumps({"status": "Success"}))

        rc, cluster, stdout, stderr = self._run(stream, command=["echo", "hello"])

        assert rc == 0
        assert stdout.getvalue() == "hello\n"
        assert stderr.getvalue() == "oops\n"
        assert stream.closed
        # 本地 stdin 不是终端，不申请 tty
        assert cluster.stream_calls == [("web-1", "default", "app", ["echo", "hello"], False)]

    def test_exec_returns_remote_exit_code(self):
        stream = FakeStream(stdout_chunks=["x"], error=_exit_status(3))
        rc, _, _, _ = self._run(stream, command=["false"])
        assert rc == 3

    def test_attach_without_exit_status(self):
        stream = FakeStream(stdout_chunks=["log line\n"])
        rc, cluster, stdout, _ = self._run(stream)
        assert rc is None
        assert stdout.getvalue() == "log line\n"
        assert cluster.stream_calls[0][3] is None

    def test_attach_warns_when_container_is_not_interactive(self, capsys):
        stream = FakeStream(stdout_chunks=["x"])
        self._run(stream, pod=make_pod(tty=False, stdin=False))
        assert "tty" in capsys.readouterr().out

    def test_open_failure_is_a_transport_error(self):
        cluster = FakeCluster()

        def _refuse():
            raise ApiException(status=403, reason="Forbidden")

        cluster.stream_factory = _refuse
        pod = make_pod(tty=True, stdin=True)

        with pytest.raises(SessionTransportError):
            attach(cluster, pod, pod.spec.containers[0], stdin=io.StringIO(), stdout=io.StringIO())

    def test_dropped_connection_closes_stream(self):
        stream = FakeStream(fail_on_update=WebSocketConnectionClosedException("gone"))

        with pytest.raises(SessionTransportError):
            self._run(stream)

        assert stream.closed

    def test_piped_stdin_eof_ends_exec(self, monkeypatch):
        monkeypatch.setattr("devkube.utils.session.EOF_IDLE_TIMEOUT", 0.1)
        read_fd, write_fd = os.pipe()
        os.write(write_fd, "你好\n".encode("utf-8"))
        os.close(write_fd)

        cluster = FakeCluster()
        stream = FakeStream(keep_open=True)
        cluster.stream_factory = lambda: stream
        pod = make_pod()

        with os.fdopen(read_fd, "rb") as stdin:
            rc = attach(cluster, pod, pod.spec.containers[0], command=["cat"],
                        stdin=stdin, stdout=io.StringIO(), stderr=io.StringIO())

        assert rc is None
        assert stream.closed
        assert "".join(stream.written) == "你好\n"


# ──────────────────────── 端口转发 ────────────────────────

class TestParsing:

    def test_port_forms(self):
        assert parse_ports(["8080:80", "9000", ":443"]) == [
            ForwardedPort(8080, 80),
            ForwardedPort(9000, 9000),
            ForwardedPort(0, 443),
        ]

    @pytest.mark.parametrize("desc", ["abc", "8080:", "80:0", "70000", "1:2:3"])
    def test_invalid_ports(self, desc):
        with pytest.raises(ConfigurationError):
            parse_ports([desc])

    def test_localhost_expands_to_both_loopbacks(self):
        assert resolve_addresses(["localhost", "127.0.0.1", "0.0.0.0"]) == ["127.0.0.1", "::1", "0.0.0.0"]

    def test_default_address(self):
        assert resolve_addresses([]) == ["127.0.0.1", "::1"]


class EchoTunnel:
    """远端是一个回显服务的隧道"""

    def __init__(self, ports):
        self.local_end, self.remote_end = socket.socketpair()
        threading.Thread(target=self._echo, daemon=True).start()

    def _echo(self):
        while True:
            data = self.remote_end.recv(1024)
            if not data:
                break
            self.remote_end.sendall(data)
        self.remote_end.close()

    def socket(self, port):
        return self.local_end

    def error(self, port):
        return None


def _start(forwarder):
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(forwarder.forward_ports)
    assert forwarder.ready.wait(5)
    return executor, future


class TestPortForwarder:

    def _forwarder(self, cluster, ports=(":8080",)):
        return PortForwarder(cluster, make_pod(), list(ports), ["127.0.0.1"],
                             threading.Event(), threading.Event())

    def test_stop_after_ready_closes_listeners(self, cluster):
        forwarder = self._forwarder(cluster)
        executor, future = _start(forwarder)

        forwarder.stop.set()

        assert future.result(timeout=5) is None
        assert forwarder.listeners
        assert all(sock.fileno() == -1 for sock, _ in forwarder.listeners)
        assert cluster.port_forward_calls == []
        executor.shutdown()

    def test_random_local_port_is_reported(self, cluster):
        forwarder = self._forwarder(cluster)
        executor, future = _start(forwarder)

        ports = forwarder.get_ports()

        forwarder.stop.set()
        future.result(timeout=5)
        executor.shutdown()
        assert ports[0].remote == 8080
        assert ports[0].local > 0

    def test_connection_is_tunnelled_to_pod(self, cluster):
        cluster.tunnel_factory = EchoTunnel
        forwarder = self._forwarder(cluster)
        executor, future = _start(forwarder)

        port = forwarder.get_ports()[0].local
        with socket.create_connection(("127.0.0.1", port), timeout=5) as conn:
            conn.sendall(b"ping")
            assert conn.recv(4) == b"ping"

        forwarder.stop.set()
        future.result(timeout=5)
        executor.shutdown()
        assert cluster.port_forward_calls == [("web-1", "default", [8080])]

    def test_lost_pod_ends_forwarding(self, cluster):
        def _gone(ports):
            # kubernetes 客户端把握手失败报为 status=0
            raise ApiException(status=0, reason="Handshake status 404 Not Found")

        cluster.tunnel_factory = _gone
        forwarder = self._forwarder(cluster)
        executor, future = _start(forwarder)

        port = forwarder.get_ports()[0].local
        with socket.create_connection(("127.0.0.1", port), timeout=5) as conn:
            # 隧道打开失败后连接被关闭
            assert conn.recv(1) == b""

        with pytest.raises(SessionTransportError):
            future.result(timeout=5)
        executor.shutdown()
        assert not forwarder.stop.is_set()

    def test_tunnel_failure_with_live_pod_keeps_forwarding(self, cluster):
        def _refused(ports):
            raise ApiException(status=0, reason="Handshake status 500 Internal Server Error")

        cluster.pods = [make_pod()]
        cluster.tunnel_factory = _refused
        forwarder = self._forwarder(cluster)
        executor, future = _start(forwarder)

        port = forwarder.get_ports()[0].local
        with socket.create_connection(("127.0.0.1", port), timeout=5) as conn:
            assert conn.recv(1) == b""

        assert not future.done()
        forwarder.stop.set()
        assert future.result(timeout=5) is None
        executor.shutdown()

    def test_bind_failure_on_every_address(self, cluster):
        blocker = socket.socket()
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        taken = blocker.getsockname()[1]
        try:
            forwarder = self._forwarder(cluster, ports=[f"{taken}:80"])
            with pytest.raises(SessionTransportError):
                forwarder.forward_ports()
            assert not forwarder.ready.is_set()
        finally:
            blocker.close()


# ──────────────────────── 日志流 ────────────────────────

def test_log_chunks_are_split_into_lines(cluster):
    text = "第一行\nsecond".encode("utf-8")
    cluster.log_chunks = [text[:4], text[4:], b" line\n", b"tail"]

    lines = list(iter_log_lines(cluster, make_pod(), "app"))

    assert lines == ["第一行", "second line", "tail"]


def test_log_stream_errors_become_transport_errors(cluster):
    def _broken(*args, **kwargs):
        yield b"partial\n"
        raise urllib3.exceptions.ProtocolError("connection reset")

    cluster.read_log_stream = _broken

    with pytest.raises(SessionTransportError):
        list(iter_log_lines(cluster, make_pod()))
