#!/usr/bin/env python3
"""
devkube: 开发集群 Pod 连接工具
用法:
    python -m devkube                 # 交互式主菜单
    python -m devkube attach -l app=web
"""
import functools
import sys

import click
from kubernetes.client.rest import ApiException

from devkube.utils.discovery import PodSelector
from devkube.utils.errors import DevKubeError
from devkube.utils.ui import console, print_banner, print_error

# 延迟加载配置，避免 import 阶段触发交互式引导
_config = None


def _get_config():
    global _config
    if _config is None:
        from devkube.utils.config import load_config
        _config = load_config()
    return _config


def _get_client(ctx):
    """第一次用到时才连接集群"""
    if ctx.obj.get("kube") is None:
        from devkube.utils.kube import KubeClient
        ctx.obj["kube"] = KubeClient(
            namespace=ctx.obj["namespace"],
            context=ctx.obj["context"],
            kubeconfig=ctx.obj["kubeconfig"],
        )
    return ctx.obj["kube"]


def handle_errors(func):
    """把可预期的失败转成错误提示和退出码"""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DevKubeError as e:
            print_error(str(e))
            sys.exit(1)
        except ApiException as e:
            print_error(f"Kubernetes API 错误: {e.status} {e.reason}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[dim]操作已中断[/dim]")
            sys.exit(130)
    return wrapper


def selector_options(func):
    """attach / exec / logs / port-forward 共用的选择器参数"""
    options = [
        click.option("--pod", "-p", "pod_name", default=None, help="Pod 名称"),
        click.option("--container", "-c", "container_name", default=None, help="容器名称"),
        click.option("--label-selector", "-l", default="", help="标签选择器，如 app=web"),
        click.option("--image", "-i", "images", multiple=True, help="镜像名称，可多次指定"),
        click.option("--deployment", "-d", default=None, help="使用 Deployment 的 matchLabels 作为选择器"),
        click.option("--max-wait", type=float, default=None, help="等待 Pod 就绪的最长时间 (秒)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_selector(ctx, pod_name=None, container_name=None, label_selector="", images=(),
                   deployment=None, max_wait=None) -> PodSelector:
    config = ctx.obj["config"]
    if deployment:
        from devkube.utils.kube import get_pod_selector_from_deployment
        label_selector = get_pod_selector_from_deployment(_get_client(ctx), deployment, ctx.obj["namespace"])

    return PodSelector(
        namespace=ctx.obj["namespace"],
        label_selector=label_selector or "",
        image_selector=tuple(images),
        pod_name=pod_name,
        container_name=container_name,
        max_wait=max_wait if max_wait is not None else config["max_wait"],
    )


# ──────────────────────── click 命令组 ────────────────────────

@click.group(invoke_without_command=True)
@click.option("--namespace", "-n", default=None, help="覆盖默认命名空间")
@click.option("--context", default=None, help="指定 kubeconfig context")
@click.option("--kubeconfig", default=None, help="指定 kubeconfig 路径")
@click.option("--verbose", "-v", is_flag=True, help="输出调试日志")
@click.pass_context
def cli(ctx, namespace, context, kubeconfig, verbose):
    """🚀 devkube: 开发集群 Pod 连接工具"""
    from devkube.utils.log import setup_logging

    config = _get_config()
    setup_logging(verbose=verbose, log_dir=config.get("log_dir"))

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["namespace"] = namespace or config.get("namespace")
    ctx.obj["context"] = context or config.get("kube_context")
    ctx.obj["kubeconfig"] = kubeconfig or config.get("kubeconfig")
    ctx.obj["kube"] = None

    # 没有子命令时进入交互式主菜单
    if ctx.invoked_subcommand is None:
        interactive_menu(ctx)


@cli.command("pods")
@click.option("--label-selector", "-l", default="", help="标签选择器")
@click.option("--deployment", "-d", default=None, help="只显示该 Deployment 的 Pods")
@click.pass_context
@handle_errors
def cmd_pods(ctx, label_selector, deployment):
    """📋 查看 Pods 状态"""
    from devkube.commands.pods import list_pods
    list_pods(_get_client(ctx), ctx.obj["namespace"], label_selector, deployment=deployment)


@cli.command("attach")
@selector_options
@click.pass_context
@handle_errors
def cmd_attach(ctx, **selector_args):
    """🔗 attach 到容器主进程"""
    from devkube.commands.shell import attach_to_pod
    attach_to_pod(_get_client(ctx), build_selector(ctx, **selector_args))


@cli.command("exec")
@selector_options
@click.argument("command", nargs=-1)
@click.pass_context
@handle_errors
def cmd_exec(ctx, command, **selector_args):
    """🖥️  在容器中执行命令 (默认进入 shell)"""
    from devkube.commands.shell import shell_into_pod
    rc = shell_into_pod(
        _get_client(ctx),
        build_selector(ctx, **selector_args),
        command=list(command),
        default_shell=ctx.obj["config"]["default_shell"],
    )
    if rc:
        sys.exit(rc)


@cli.command("logs")
@selector_options
@click.option("--follow", "-f", is_flag=True, help="实时追踪")
@click.option("--tail", type=int, default=None, help="只显示最后 N 行")
@click.pass_context
@handle_errors
def cmd_logs(ctx, follow, tail, **selector_args):
    """📜 查看容器日志"""
    from devkube.commands.logs import view_logs
    if tail is None:
        tail = ctx.obj["config"]["default_log_lines"]
    view_logs(_get_client(ctx), build_selector(ctx, **selector_args), follow=follow, tail=tail)


@cli.command("port-forward")
@selector_options
@click.argument("ports", nargs=-1, required=True)
@click.option("--address", "addresses", multiple=True, help="监听地址，可多次指定")
@click.pass_context
@handle_errors
def cmd_port_forward(ctx, ports, addresses, **selector_args):
    """🔌 端口转发，如 8080:80"""
    from devkube.commands.port_forward import port_forward
    addresses = list(addresses) or [ctx.obj["config"]["port_forward_address"]]
    port_forward(_get_client(ctx), build_selector(ctx, **selector_args), list(ports), addresses)


@cli.command("wait")
@click.option("--image", "-i", "images", multiple=True, required=True, help="镜像名称，可多次指定")
@click.option("--label-selector", "-l", default="", help="标签选择器")
@click.option("--max-wait", type=float, default=None, help="等待的最长时间 (秒)")
@click.pass_context
@handle_errors
def cmd_wait(ctx, images, label_selector, max_wait):
    """⏳ 等待使用指定镜像的 Pod 全部就绪"""
    from devkube.commands.pods import wait_for_pods
    selector = build_selector(ctx, label_selector=label_selector, images=images, max_wait=max_wait)
    wait_for_pods(_get_client(ctx), selector)


@cli.command("init")
@click.option("--pull-secret", "pull_secrets", multiple=True, help="添加到 default ServiceAccount 的镜像拉取密钥")
@click.pass_context
@handle_errors
def cmd_init(ctx, pull_secrets):
    """🛠️  创建命名空间并配置集群权限"""
    from devkube.commands.pods import init_cluster
    init_cluster(_get_client(ctx), ctx.obj["namespace"], list(pull_secrets))


# ──────────────────────── 交互式主菜单 ────────────────────────

def interactive_menu(ctx):
    """交互式主菜单循环"""
    from InquirerPy import inquirer

    config = ctx.obj["config"]

    while True:
        console.clear()
        print_banner()
        console.print(f"[dim]命名空间: {ctx.obj['namespace'] or '(kubeconfig 默认)'}[/dim]\n")

        try:
            action = inquirer.select(
                message="主人，请选择操作",
                choices=[
                    {"name": "📋 查看 Pods 状态", "value": "pods"},
                    {"name": "🖥️  进入容器终端", "value": "exec"},
                    {"name": "🔗 attach 到容器", "value": "attach"},
                    {"name": "📜 查看容器日志", "value": "logs"},
                    {"name": "🔌 端口转发", "value": "port-forward"},
                    {"name": "❌ 退出", "value": "quit"},
                ],
                pointer="❯",
            ).execute()
        except (KeyboardInterrupt, EOFError):
            console.print("\n[cyan]👋 主人再见！[/cyan]")
            return

        if action == "quit":
            console.print("\n[cyan]👋 主人再见！[/cyan]")
            return

        console.print()

        try:
            kube = _get_client(ctx)
            selector = build_selector(ctx)
            if action == "pods":
                from devkube.commands.pods import list_pods
                list_pods(kube, ctx.obj["namespace"])
            elif action == "exec":
                from devkube.commands.shell import shell_into_pod
                shell_into_pod(kube, selector, default_shell=config["default_shell"])
            elif action == "attach":
                from devkube.commands.shell import attach_to_pod
                attach_to_pod(kube, selector)
            elif action == "logs":
                from devkube.commands.logs import view_logs
                view_logs(kube, selector, tail=config["default_log_lines"])
            elif action == "port-forward":
                from devkube.commands.port_forward import port_forward
                ports = inquirer.text(message="主人，请输入端口 (如 8080:80，多个用空格分隔)").execute().split()
                if ports:
                    port_forward(kube, selector, ports, [config["port_forward_address"]])
        except KeyboardInterrupt:
            console.print("\n[dim]操作已中断[/dim]")
        except (DevKubeError, ApiException) as e:
            print_error(f"执行出错: {e}")

        console.print()
        try:
            inquirer.text(message="主人，按回车键返回主菜单...").execute()
        except (KeyboardInterrupt, EOFError):
            console.print("\n[cyan]👋 主人再见！[/cyan]")
            return


# ──────────────────────── 入口 ────────────────────────

if __name__ == "__main__":
    cli()
