"""CLI — 构建命令"""

from __future__ import annotations

import click

from assetpipe.cli.defaults import DEFAULT_CONFIG
from assetpipe.core.exceptions import AssetPipeError, BuildError, MarkupValidationError


def register(group: click.Group) -> None:
    group.add_command(build)


@click.command()
@click.option("--config", "-c", "config_path", default=DEFAULT_CONFIG, help="配置文件路径")
@click.option("--force", is_flag=True, default=None, help="HTML 校验失败时继续构建（同 FORCE_BUILD=true）")
@click.option("--concurrency", "-j", type=int, default=None, help="图片并发处理数")
def build(config_path: str, force: bool | None, concurrency: int | None) -> None:
    """执行一次增量构建"""
    from assetpipe.cli import _container
    from assetpipe.services.orchestrator import BuildOrchestrator

    try:
        container = _container(
            config_path,
            force_build=True if force else None,
            image_concurrency=concurrency,
        )
        outcome = BuildOrchestrator(container).run()
    except BuildError as e:
        click.echo(f"构建失败 [{e.pipeline}]: {e}", err=True)
        raise SystemExit(1) from e
    except MarkupValidationError as e:
        click.echo(f"构建失败: {e}", err=True)
        for detail in e.details:
            click.echo(f"  - {detail}", err=True)
        raise SystemExit(1) from e
    except AssetPipeError as e:
        click.echo(f"构建失败 ({e.code}): {e}", err=True)
        raise SystemExit(1) from e

    report = outcome.report
    stats = report.cache_stats
    click.echo(f"构建完成: {report.duration_seconds:.2f}s -> {report.output_directory}")
    click.echo(f"  js={len(report.js)} css={len(report.css)} images={len(report.images)}")
    click.echo(f"  缓存: 命中 {stats.hits} / 未命中 {stats.misses}, 磁盘 {stats.disk_items} 条")
