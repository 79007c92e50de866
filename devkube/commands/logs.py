"""查看容器日志"""
from typing import Optional

from devkube.commands.target import resolve_target
from devkube.utils.discovery import PodSelector
from devkube.utils.session import iter_log_lines
from devkube.utils.ui import console, print_info, print_warning


def _print_line(line: str):
    # 简单的日志着色: ERROR 红色, WARNING 黄色
    if "ERROR" in line or "error" in line:
        console.print(line, markup=False, highlight=False, style="red")
    elif "WARNING" in line or "warning" in line or "WARN" in line:
        console.print(line, markup=False, highlight=False, style="yellow")
    else:
        console.print(line, markup=False, highlight=False)


def view_logs(kube, selector: PodSelector, follow: bool = False, tail: Optional[int] = 100):
    """查看目标容器日志，follow 时持续追踪"""
    target = resolve_target(kube, selector)
    if target is None:
        return
    pod, container = target

    pod_display = f"{pod.metadata.name} ({container.name})"
    if follow:
        print_info(f"正在追踪 {pod_display} 的日志... (Ctrl+C 退出)")
    else:
        print_info(f"正在获取 {pod_display} 的日志...")
    console.print()

    count = 0
    try:
        for line in iter_log_lines(kube, pod, container.name, follow=follow, tail_lines=tail):
            _print_line(line)
            count += 1
    except KeyboardInterrupt:
        console.print("\n[dim]主人，已退出日志追踪[/dim]")
        return

    if count == 0 and not follow:
        print_warning("日志为空")
