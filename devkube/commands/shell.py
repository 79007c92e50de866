"""进入容器: attach 到主进程或 exec 一个 shell"""
from typing import List, Optional

from devkube.commands.target import resolve_target
from devkube.utils.discovery import PodSelector
from devkube.utils.session import attach
from devkube.utils.ui import console


def attach_to_pod(kube, selector: PodSelector):
    """attach 到容器主进程"""
    target = resolve_target(kube, selector)
    if target is None:
        return
    pod, container = target

    attach(kube, pod, container)
    console.print(f"\n[dim]主人，已断开 {pod.metadata.name}[/dim]")


def shell_into_pod(kube, selector: PodSelector, command: Optional[List[str]] = None,
                   default_shell: str = "/bin/bash") -> Optional[int]:
    """在容器中执行命令，默认打开 shell"""
    target = resolve_target(kube, selector)
    if target is None:
        return None
    pod, container = target

    cmd = list(command) if command else [default_shell]
    console.print(f"[dim]命令: {' '.join(cmd)} | 输入 exit 退出容器[/dim]\n")

    rc = attach(kube, pod, container, command=cmd)
    # 只在 shell 不存在（退出码 126/127）时回退到 sh
    if not command and rc in (126, 127) and default_shell == "/bin/bash":
        rc = attach(kube, pod, container, command=["/bin/sh"])

    console.print(f"\n[dim]主人，已退出容器 {pod.metadata.name}[/dim]")
    return rc
