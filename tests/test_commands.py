import socket

from devkube.commands import port_forward as port_forward_command
from devkube.utils.discovery import PodSelector
from tests.conftest import FakeCluster, make_pod


def test_interrupt_stops_port_forward_cleanly(monkeypatch):
    cluster = FakeCluster(pods=[make_pod("web-1")])
    messages = []
    listeners = []

    def _print_info(msg):
        messages.append(msg)
        if len(messages) == 1:
            # 端口映射打印出来时用户按下 Ctrl+C
            raise KeyboardInterrupt

    original = port_forward_command.PortForwarder

    def _forwarder(*args, **kwargs):
        forwarder = original(*args, **kwargs)
        listeners.append(forwarder)
        return forwarder

    monkeypatch.setattr(port_forward_command, "print_info", _print_info)
    monkeypatch.setattr(port_forward_command, "PortForwarder", _forwarder)

    port_forward_command.port_forward(cluster, PodSelector(pod_name="web-1"), [":8080"], ["127.0.0.1"])

    assert "端口转发: 127.0.0.1" in messages[0]
    assert messages[1] == "正在停止端口转发..."
    forwarder = listeners[0]
    assert forwarder.stop.is_set()
    assert all(sock.fileno() == -1 for sock, _ in forwarder.listeners)
    port = forwarder.get_ports()[0].local
    client_sock = socket.socket()
    try:
        assert client_sock.connect_ex(("127.0.0.1", port)) != 0
    finally:
        client_sock.close()
