"""
交互会话: attach / exec、端口转发、日志流

会话只绑定一个已解析好的 (Pod, 容器)，断开后不会自动重新解析或重试，
由调用方决定是否重新查找 Pod。
"""
import codecs
import contextlib
import json
import os
import select
import shutil
import signal
import socket
import sys
import termios
import threading
import time
import tty
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterator, List, Optional

import urllib3
from kubernetes.client.rest import ApiException
from kubernetes.stream.ws_client import ERROR_CHANNEL, RESIZE_CHANNEL
from websocket import WebSocketException

from devkube.utils.errors import ConfigurationError, SessionTransportError
from devkube.utils.kube import ClusterAPI
from devkube.utils.log import get_file_logger
from devkube.utils.ui import console, print_info, print_warning

# 每次从套接字读取的字节数
BUFFER_SIZE = 32 * 1024
# 轮询 stop 信号的间隔 (秒)
POLL_INTERVAL = 0.2
# 本地 stdin 结束后，远端这么久没有输出就结束会话 (秒)
EOF_IDLE_TIMEOUT = 1.0


# ──────────────────────── attach / exec ────────────────────────

def _fileno(stream) -> Optional[int]:
    try:
        return stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None


def _isatty(stream) -> bool:
    fd = _fileno(stream)
    return fd is not None and os.isatty(fd)


@contextlib.contextmanager
def _raw_terminal(stream, enabled: bool):
    """tty 会话期间把本地终端切到 raw 模式，退出时恢复"""
    fd = _fileno(stream)
    if not enabled or fd is None:
        yield
        return

    old_settings = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)


def _send_terminal_size(ws):
    cols, rows = shutil.get_terminal_size((80, 24))
    ws.write_channel(RESIZE_CHANNEL, json.dumps({"Width": cols, "Height": rows}))


def _exit_code(ws) -> Optional[int]:
    """
    从 error 通道读取远端退出状态
    attach 没有退出状态时返回 None
    """
    raw = ws.read_channel(ERROR_CHANNEL)
    if not raw:
        return None
    try:
        status = json.loads(raw)
    except ValueError:
        raise SessionTransportError(f"无法解析会话状态: {raw}")

    if status.get("status") == "Success":
        return 0
    if status.get("reason") == "NonZeroExitCode":
        for cause in (status.get("details") or {}).get("causes") or []:
            if cause.get("reason") == "ExitCode":
                return int(cause.get("message", 1))
        return 1
    raise SessionTransportError(status.get("message") or raw)


def _relay(ws, stdin, stdout, stderr, close_on_eof: bool = False) -> Optional[int]:
    """
    在工作线程中搬运本地标准流与远端流，直到远端关闭

    close_on_eof 时本地 stdin 结束后继续接收输出，
    远端空闲超过 EOF_IDLE_TIMEOUT 即关闭会话 (websocket 协议无法单独关闭远端 stdin)。
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    stdin_fd = _fileno(stdin)
    eof_at = None

    try:
        while ws.is_open():
            ws.update(timeout=POLL_INTERVAL)
            received = False
            if ws.peek_stdout():
                stdout.write(ws.read_stdout())
                stdout.flush()
                received = True
            if ws.peek_stderr():
                stderr.write(ws.read_stderr())
                stderr.flush()
                received = True

            if eof_at is not None:
                if received:
                    eof_at = time.monotonic()
                elif time.monotonic() - eof_at > EOF_IDLE_TIMEOUT:
                    ws.close()
                    break
                continue

            if stdin_fd is None:
                continue
            readable, _, _ = select.select([stdin_fd], [], [], 0)
            if readable:
                data = os.read(stdin_fd, 1024)
                if not data:
                    # 本地 stdin 已结束
                    stdin_fd = None
                    tail = decoder.decode(b"", final=True)
                    if tail:
                        ws.write_stdin(tail)
                    if close_on_eof:
                        eof_at = time.monotonic()
                    continue
                ws.write_stdin(decoder.decode(data))
    except (WebSocketException, OSError) as e:
        raise SessionTransportError(f"会话连接中断: {e}") from e

    return _exit_code(ws)


def attach(kube: ClusterAPI, pod, container, command: Optional[List[str]] = None,
           stdin=None, stdout=None, stderr=None) -> Optional[int]:
    """
    把本地标准输入输出接到容器上，阻塞直到会话结束

    不传 command 时 attach 到容器主进程，否则在容器内 exec 该命令。
    返回远端退出码 (attach 时通常为 None)。
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr
    session_log = get_file_logger("attach")

    if command:
        use_tty = _isatty(stdin)
    else:
        use_tty = bool(container.tty)
        if not container.tty or not container.stdin:
            print_warning(
                f"要与容器交互, tty (当前 `{bool(container.tty)}`) 和 stdin (当前 `{bool(container.stdin)}`) 都必须为 true"
            )

    namespace = pod.metadata.namespace or kube.namespace
    print_info(f"正在连接 pod:container [bold]{pod.metadata.name}[/bold]:[bold]{container.name}[/bold]")
    console.print("[dim]如果没有看到命令提示符，请尝试按回车[/dim]")

    try:
        ws = kube.open_stream(pod.metadata.name, namespace, container.name,
                              command=command, tty=use_tty, stdin=True)
    except (ApiException, WebSocketException, OSError) as e:
        session_log.error("打开 %s/%s 的会话失败: %s", pod.metadata.name, container.name, e)
        raise SessionTransportError(f"无法连接到 {pod.metadata.name}:{container.name}: {e}") from e

    session_log.info("会话已建立: %s/%s command=%s tty=%s", pod.metadata.name, container.name, command, use_tty)
    old_winch = None
    if use_tty:
        _send_terminal_size(ws)
        if threading.current_thread() is threading.main_thread():
            old_winch = signal.signal(signal.SIGWINCH, lambda signum, frame: _send_terminal_size(ws))

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="devkube-attach")
    future = executor.submit(_relay, ws, stdin, stdout, stderr, not use_tty)
    try:
        with _raw_terminal(stdin, use_tty and _isatty(stdin)):
            result = future.result()
        session_log.info("会话结束: %s/%s exit=%s", pod.metadata.name, container.name, result)
        return result
    except SessionTransportError as e:
        session_log.error("会话中断: %s", e)
        raise
    finally:
        if old_winch is not None:
            signal.signal(signal.SIGWINCH, old_winch)
        # 无论成功失败都要释放升级后的连接
        ws.close()
        executor.shutdown(wait=False)


# ──────────────────────── 端口转发 ────────────────────────

@dataclass
class ForwardedPort:
    """一对 本地端口:远端端口，本地端口为 0 表示随机分配"""
    local: int
    remote: int


def _parse_port_number(value: str, desc: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise ConfigurationError(f"无效的端口: {desc}")
    if not 0 <= port <= 65535:
        raise ConfigurationError(f"端口超出范围: {desc}")
    return port


def parse_ports(ports: List[str]) -> List[ForwardedPort]:
    """解析 "8080:80" / "8080" / ":80" 形式的端口描述"""
    parsed = []
    for desc in ports:
        desc = str(desc).strip()
        if ":" in desc:
            local, remote = desc.split(":", 1)
            local_port = _parse_port_number(local, desc) if local else 0
            remote_port = _parse_port_number(remote, desc)
        else:
            local_port = remote_port = _parse_port_number(desc, desc)
        if remote_port == 0:
            raise ConfigurationError(f"远端端口不能为 0: {desc}")
        parsed.append(ForwardedPort(local_port, remote_port))
    return parsed


def resolve_addresses(addresses: List[str]) -> List[str]:
    """localhost 同时监听 IPv4 和 IPv6 回环地址"""
    resolved = []
    for address in addresses or ["localhost"]:
        if address == "localhost":
            candidates = ["127.0.0.1", "::1"]
        else:
            candidates = [address]
        for candidate in candidates:
            if candidate not in resolved:
                resolved.append(candidate)
    return resolved


def _pipe(a, b, stop: threading.Event):
    """双向转发，任一端关闭即返回"""
    peers = {a: b, b: a}
    while not stop.is_set():
        readable, _, _ = select.select(list(peers), [], [], POLL_INTERVAL)
        for sock in readable:
            data = sock.recv(BUFFER_SIZE)
            if not data:
                return
            peers[sock].sendall(data)


class PortForwarder:
    """
    把本地端口转发到 Pod
    每个 (地址, 端口) 一个监听套接字，每个连接一条独立的隧道
    """

    def __init__(self, kube: ClusterAPI, pod, ports: List[str], addresses: List[str],
                 stop: threading.Event, ready: threading.Event):
        self.kube = kube
        self.pod_name = pod.metadata.name
        self.namespace = pod.metadata.namespace or kube.namespace
        self.ports = parse_ports(ports)
        self.addresses = resolve_addresses(addresses)
        self.stop = stop
        self.ready = ready
        self.log = get_file_logger("portforwarding")
        self.listeners = []
        self._threads = []
        self._tunnels = set()
        self._lock = threading.Lock()
        self._lost = None
        self._closing = threading.Event()

    def get_ports(self) -> List[ForwardedPort]:
        """监听建立后返回实际使用的端口"""
        return list(self.ports)

    def _listen(self):
        for port in self.ports:
            bound = []
            for address in self.addresses:
                family = socket.AF_INET6 if ":" in address else socket.AF_INET
                try:
                    sock = socket.socket(family, socket.SOCK_STREAM)
                except OSError as e:
                    self.log.warning("无法创建 %s 的套接字: %s", address, e)
                    continue
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                    sock.bind((address, port.local))
                    sock.listen(128)
                except OSError as e:
                    sock.close()
                    self.log.warning("无法监听 %s:%d: %s", address, port.local, e)
                    continue
                if port.local == 0:
                    # 随机端口在其余地址上保持一致
                    port.local = sock.getsockname()[1]
                bound.append(sock)
                self.listeners.append((sock, port))
                self.log.info("Forwarding from %s:%d -> %d", address, port.local, port.remote)

            if not bound:
                raise SessionTransportError(f"无法在 {', '.join(self.addresses)} 上监听端口 {port.local}")

    def _accept_loop(self, sock, port: ForwardedPort):
        while not self._closing.is_set():
            try:
                readable, _, _ = select.select([sock], [], [], POLL_INTERVAL)
                if not readable:
                    continue
                conn, addr = sock.accept()
            except (OSError, ValueError):
                # 监听套接字已关闭
                return
            self.log.info("Handling connection for %d", port.local)
            worker = threading.Thread(target=self._handle_connection, args=(conn, port), daemon=True)
            worker.start()

    def _check_pod(self):
        """隧道打开失败后确认 Pod 是否还在"""
        try:
            self.kube.read_pod(self.pod_name, self.namespace)
        except ApiException as e:
            if e.status == 404:
                self._lost = f"Pod {self.pod_name} 已不存在"
            else:
                self.log.error("读取 Pod %s 失败: %s", self.pod_name, e)

    def _handle_connection(self, conn, port: ForwardedPort):
        try:
            tunnel = self.kube.open_port_forward(self.pod_name, self.namespace, [port.remote])
        except (ApiException, WebSocketException, OSError) as e:
            # 握手失败统一报为 ApiException(status=0)，需要重新读取 Pod 判断
            self.log.error("打开到 %s:%d 的隧道失败: %s", self.pod_name, port.remote, e)
            conn.close()
            self._check_pod()
            return

        remote = tunnel.socket(port.remote)
        with self._lock:
            self._tunnels.add(remote)
        try:
            _pipe(conn, remote, self._closing)
        except OSError as e:
            self.log.error("转发 %d -> %d 时出错: %s", port.local, port.remote, e)
        finally:
            conn.close()
            remote.close()
            with self._lock:
                self._tunnels.discard(remote)

        error = tunnel.error(port.remote)
        if error:
            self.log.error("端口 %d 转发错误: %s", port.remote, error)

    def _close(self):
        for sock, _ in self.listeners:
            sock.close()
        with self._lock:
            tunnels = list(self._tunnels)
            self._tunnels.clear()
        for remote in tunnels:
            remote.close()
        for thread in self._threads:
            thread.join(timeout=2)

    def forward_ports(self) -> None:
        """阻塞直到 stop 被设置；远端丢失时抛出 SessionTransportError"""
        try:
            self._listen()
            for sock, port in self.listeners:
                thread = threading.Thread(target=self._accept_loop, args=(sock, port), daemon=True)
                thread.start()
                self._threads.append(thread)
            self.ready.set()

            while not self.stop.wait(POLL_INTERVAL):
                if self._lost:
                    raise SessionTransportError(self._lost)
        finally:
            self._closing.set()
            self._close()
            self.log.info("端口转发已停止: %s", self.pod_name)


def port_forward(kube: ClusterAPI, pod, ports: List[str], addresses: List[str],
                 stop: threading.Event, ready: threading.Event) -> None:
    """转发端口直到 stop 被设置"""
    forwarder = PortForwarder(kube, pod, ports, addresses, stop, ready)
    forwarder.forward_ports()


# ──────────────────────── 日志流 ────────────────────────

def iter_log_lines(kube: ClusterAPI, pod, container: Optional[str] = None, follow: bool = False,
                   tail_lines: Optional[int] = None) -> Iterator[str]:
    """按行返回容器日志"""
    namespace = pod.metadata.namespace or kube.namespace
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = ""
    try:
        for chunk in kube.read_log_stream(pod.metadata.name, namespace, container=container,
                                          follow=follow, tail_lines=tail_lines):
            pending += decoder.decode(chunk)
            *lines, pending = pending.split("\n")
            for line in lines:
                yield line
    except urllib3.exceptions.HTTPError as e:
        raise SessionTransportError(f"日志流中断: {e}") from e

    pending += decoder.decode(b"", final=True)
    if pending:
        yield pending
