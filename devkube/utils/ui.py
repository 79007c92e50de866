"""交互式 UI 组件封装"""
from datetime import datetime, timezone
from typing import List, Optional

from InquirerPy import inquirer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

console = Console()

# 状态颜色映射
STATUS_COLORS = {
    "Running": "green",
    "Succeeded": "blue",
    "Completed": "dim",
    "Pending": "yellow",
    "ContainerCreating": "yellow",
    "PodInitializing": "yellow",
    "Init": "yellow",
    "Failed": "red",
    "Error": "red",
    "CrashLoopBackOff": "red",
    "ImagePullBackOff": "red",
    "ErrImagePull": "red",
    "CreateContainerConfigError": "red",
    "InvalidImageName": "red",
    "RunContainerError": "red",
    "Terminating": "magenta",
    "Unknown": "dim",
}


def print_banner():
    """打印工具横幅"""
    banner = Text()
    banner.append("🚀 devkube\n", style="bold cyan")
    banner.append("   开发集群里的 Pod 连接工具", style="dim")
    console.print(Panel(banner, border_style="cyan", padding=(0, 2)))


def colorize_status(status: str) -> str:
    """为状态添加 rich 颜色标记"""
    key = "Init" if status.startswith("Init:") else status
    color = STATUS_COLORS.get(key, "white")
    return f"[{color}]{status}[/{color}]"


def format_age(created: Optional[datetime]) -> str:
    """把创建时间转成 3d4h / 5m 这样的存活时长"""
    if created is None:
        return "-"
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    seconds = int((datetime.now(timezone.utc) - created).total_seconds())
    if seconds < 60:
        return f"{max(seconds, 0)}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h{seconds % 3600 // 60}m"
    return f"{seconds // 86400}d{seconds % 86400 // 3600}h"


def print_pods_table(pods: list, title: str = "Pods 状态"):
    """打印 Pod 表格，状态列使用推导后的状态"""
    from devkube.utils.pod_status import get_pod_status

    table = Table(title=title, show_lines=False, border_style="dim")
    table.add_column("#", style="dim", width=4)
    table.add_column("名称", style="cyan", min_width=30)
    table.add_column("READY", justify="center", width=8)
    table.add_column("状态", justify="center", width=22)
    table.add_column("重启", justify="center", width=6)
    table.add_column("存活", width=10)

    for i, pod in enumerate(pods, 1):
        statuses = pod.status.container_statuses or []
        ready = sum(1 for cs in statuses if cs.ready)
        total = len(pod.spec.containers or [])
        restarts = sum(cs.restart_count or 0 for cs in statuses)
        table.add_row(
            str(i),
            pod.metadata.name,
            f"{ready}/{total}",
            colorize_status(get_pod_status(pod)),
            str(restarts),
            format_age(pod.metadata.creation_timestamp),
        )

    console.print(table)


def select_pod(pods: list, message: str = "请选择 Pod"):
    """交互式选择一个 Pod，返回 V1Pod。选择返回时返回 None"""
    from devkube.utils.pod_status import get_pod_status

    if not pods:
        console.print("[yellow]⚠️  主人，没有可选的 Pod[/yellow]")
        return None
    if len(pods) == 1:
        return pods[0]

    choices = []
    for pod in pods:
        label = f"{pod.metadata.name}  ({get_pod_status(pod)})"
        choices.append({"name": label, "value": pod})
    choices.append({"name": "↩️  返回上一级", "value": None})

    return inquirer.select(
        message=f"主人，{message}",
        choices=choices,
        pointer="❯",
    ).execute()


def select_container(containers: list, message: str = "请选择容器"):
    """交互式选择容器，返回 V1Container。选择返回时返回 None"""
    if not containers:
        return None
    if len(containers) == 1:
        return containers[0]

    choices = [{"name": f"{c.name}  ({c.image})", "value": c} for c in containers]
    choices.append({"name": "↩️  返回上一级", "value": None})
    return inquirer.select(
        message=f"主人，{message}",
        choices=choices,
        pointer="❯",
    ).execute()


def print_success(msg: str):
    console.print(f"[green]✅ 主人，{msg}[/green]")


def print_error(msg: str):
    console.print(f"[red]❌ 主人，{msg}[/red]")


def print_warning(msg: str):
    console.print(f"[yellow]⚠️  主人，{msg}[/yellow]")


def print_info(msg: str):
    console.print(f"[cyan]ℹ️  主人，{msg}[/cyan]")
