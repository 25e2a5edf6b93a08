"""CLI — 缓存管理命令"""

from __future__ import annotations

import click

from assetpipe.cli.defaults import DEFAULT_CONFIG


def register(group: click.Group) -> None:
    group.add_command(cache_group)


@click.group(name="cache")
def cache_group() -> None:
    """构建缓存管理"""


@cache_group.command(name="stats")
@click.option("--config", "-c", "config_path", default=DEFAULT_CONFIG, help="配置文件路径")
def cache_stats(config_path: str) -> None:
    """查看缓存统计"""
    from assetpipe.cli import _container

    stats = _container(config_path).cache.stats().to_dict()
    click.echo(f"  内存条目: {stats['memoryItemCount']}")
    click.echo(f"  磁盘条目: {stats['diskItemCount']}")
    click.echo(f"  磁盘占用: {stats['sizeMB']} MB ({stats['totalBytes']} 字节)")


@cache_group.command(name="clear")
@click.option("--config", "-c", "config_path", default=DEFAULT_CONFIG, help="配置文件路径")
def cache_clear(config_path: str) -> None:
    """清空内存与磁盘缓存"""
    from assetpipe.cli import _container

    container = _container(config_path)
    container.cache.clear()
    click.echo(f"缓存已清空: {container.cache.cache_dir}")
