"""端口转发"""
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import List

from devkube.commands.target import resolve_target
from devkube.utils.discovery import PodSelector
from devkube.utils.kube import is_private_ip
from devkube.utils.session import PortForwarder
from devkube.utils.ui import console, print_info, print_warning


def port_forward(kube, selector: PodSelector, ports: List[str], addresses: List[str]):
    """转发端口，Ctrl+C 停止"""
    target = resolve_target(kube, selector)
    if target is None:
        return
    pod, _ = target

    for address in addresses:
        if address != "localhost" and not is_private_ip(address):
            print_warning(f"地址 {address} 不是私有地址，转发端口可能被外部访问")

    stop = threading.Event()
    ready = threading.Event()
    forwarder = PortForwarder(kube, pod, ports, addresses, stop, ready)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="devkube-forward")
    future = executor.submit(forwarder.forward_ports)
    try:
        # 监听失败时 future 会提前结束
        while not ready.wait(0.2):
            if future.done():
                future.result()
                return

        console.print()
        for port in forwarder.get_ports():
            print_info(f"端口转发: {', '.join(addresses)}:{port.local} -> {pod.metadata.name}:{port.remote}")
        console.print("[dim]按 Ctrl+C 停止端口转发[/dim]\n")

        future.result()
    except KeyboardInterrupt:
        print_info("正在停止端口转发...")
        stop.set()
        future.result()
        console.print("[dim]端口转发已停止[/dim]")
    finally:
        stop.set()
        executor.shutdown(wait=False)
