"""assetpipe 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import os

import click

from assetpipe import __version__
from assetpipe.core.config import Config
from assetpipe.services.container import ServiceContainer
from assetpipe.utils.logger import setup_logging


def _container(config_path: str, **overrides: object) -> ServiceContainer:
    """加载配置（文件 → 环境变量 → 命令行覆盖）并构造服务容器"""
    cfg = Config.from_file(config_path).apply_env()
    for key, value in overrides.items():
        if value is not None:
            setattr(cfg, key, value)
    return ServiceContainer(cfg.validate())


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """assetpipe - 增量静态资源构建流水线"""
    setup_logging(
        level=os.getenv("ASSETPIPE_LOG_LEVEL", "INFO"),
        json_output=os.getenv("ASSETPIPE_LOG_JSON", "") == "1",
    )


# 注册各领域子命令
from assetpipe.cli.cmd_build import register as _reg_build  # noqa: E402
from assetpipe.cli.cmd_cache import register as _reg_cache  # noqa: E402

_reg_build(main)
_reg_cache(main)
