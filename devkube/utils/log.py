"""日志: 终端使用 rich，会话诊断写入独立的日志文件"""
import logging
import os
from typing import Optional

from rich.logging import RichHandler

from devkube.utils.ui import console

DEFAULT_LOG_DIR = os.path.join(".devkube", "logs")

_log_dir = DEFAULT_LOG_DIR


def setup_logging(verbose: bool = False, log_dir: Optional[str] = None):
    """CLI 入口调用一次"""
    global _log_dir
    if log_dir:
        _log_dir = os.path.expanduser(log_dir)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    # kubernetes / urllib3 的调试输出太多
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("kubernetes").setLevel(logging.WARNING)


def get_file_logger(name: str, log_dir: Optional[str] = None) -> logging.Logger:
    """
    返回写入 <log_dir>/<name>.log 的 logger
    不向上传播，避免会话诊断混进终端输出
    """
    logger = logging.getLogger(f"devkube.file.{name}")
    if logger.handlers:
        return logger

    directory = log_dir or _log_dir
    os.makedirs(directory, exist_ok=True)
    handler = logging.FileHandler(os.path.join(directory, f"{name}.log"), encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))

    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger
