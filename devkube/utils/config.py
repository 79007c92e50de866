"""配置文件读取模块"""
import os
import sys

import yaml

from devkube.utils.ui import console, print_warning

DEFAULT_CONFIG = {
    "namespace": None,              # None 表示使用 kubeconfig 当前 context 的命名空间
    "kube_context": None,
    "kubeconfig": None,
    "max_wait": 120,                # 等待 Pod 就绪的最长时间 (秒)
    "default_shell": "/bin/bash",
    "default_log_lines": 100,
    "log_dir": "./.devkube/logs",
    "port_forward_address": "localhost",
}

CONFIG_FILE_NAME = ".devkubeconfig"


def _config_paths() -> list:
    """按优先级返回候选配置文件路径"""
    return [
        os.environ.get("DEVKUBE_CONFIG"),                   # 1. 环境变量
        os.path.join(os.getcwd(), CONFIG_FILE_NAME),        # 2. 当前目录
        os.path.expanduser(f"~/{CONFIG_FILE_NAME}"),        # 3. 用户目录
    ]


def _find_config_file():
    """查找配置文件，返回找到的路径或 None"""
    for path in _config_paths():
        if path and os.path.exists(path):
            return path
    return None


def save_config(config_path: str, config: dict):
    """写入配置文件，只保存非空项"""
    data = {k: v for k, v in config.items() if v is not None}
    with open(config_path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, indent=2)


def _interactive_init() -> dict:
    """交互式引导用户创建配置"""
    from InquirerPy import inquirer
    from rich.panel import Panel

    console.print()
    console.print(Panel(
        "[bold cyan]欢迎使用 devkube![/bold cyan]\n\n"
        "  首次使用，让我们快速完成初始化配置。\n"
        "  所有选项都有默认值，直接回车即可跳过。",
        title="🔧 初始化配置",
        border_style="cyan",
        padding=(1, 2),
    ))
    console.print()

    default_config_path = os.path.join(os.getcwd(), CONFIG_FILE_NAME)
    config_path = inquirer.select(
        message="配置文件存放位置",
        choices=[
            {"name": f"当前目录 ({default_config_path})", "value": default_config_path},
            {"name": f"用户目录 ({os.path.expanduser('~/' + CONFIG_FILE_NAME)})",
             "value": os.path.expanduser(f"~/{CONFIG_FILE_NAME}")},
        ],
        default=default_config_path,
        pointer="❯",
    ).execute()

    namespace = inquirer.text(
        message="Kubernetes 命名空间 (留空使用 kubeconfig 中的设置)",
        default="",
    ).execute().strip()

    max_wait = inquirer.number(
        message="等待 Pod 就绪的最长时间 (秒)",
        default=DEFAULT_CONFIG["max_wait"],
        min_allowed=10,
        max_allowed=3600,
    ).execute()

    config = DEFAULT_CONFIG.copy()
    config["namespace"] = namespace or None
    config["max_wait"] = int(max_wait)

    save_config(config_path, config)
    console.print(f"[green]✅ 配置已保存: {config_path}[/green]")
    console.print("[dim]后续可直接编辑该文件修改配置[/dim]")
    console.print()
    return config


def load_config(ask_if_missing: bool = True) -> dict:
    """加载配置文件"""
    config = DEFAULT_CONFIG.copy()
    config_path = _find_config_file()

    if config_path:
        try:
            with open(config_path, "r") as f:
                user_config = yaml.safe_load(f) or {}
            config.update(user_config)
        except (OSError, yaml.YAMLError) as e:
            print_warning(f"读取配置文件失败: {e}")
    elif ask_if_missing and sys.stdin.isatty():
        config = _interactive_init()

    # 展开路径中的 ~
    for key in ("kubeconfig", "log_dir"):
        if config.get(key):
            config[key] = os.path.expanduser(config[key])

    return config
