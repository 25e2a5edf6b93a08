"""清单与构建报告写入

图片清单和构建报告都是派生数据，每次构建整体重新生成而非增量修改。
构建开始时先删除上一次的清单和报告，构建中途失败时磁盘上不会留下与产物不一致的旧清单。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from assetpipe.core.models import BuildReport
from assetpipe.utils.files import write_json

logger = logging.getLogger(__name__)


class ManifestWriter:
    """序列化图片清单与构建报告"""

    def __init__(self, manifest_path: str | Path, report_path: str | Path) -> None:
        self.manifest_path = Path(manifest_path)
        self.report_path = Path(report_path)

    def reset(self) -> None:
        """删除上一次构建留下的清单和报告"""
        for path in (self.manifest_path, self.report_path):
            if path.exists():
                path.unlink()
                logger.debug("已删除旧文件: %s", path)

    def write_manifest(self, manifest: dict[str, list[dict[str, Any]]]) -> Path:
        path = write_json(self.manifest_path, manifest)
        logger.info("图片清单已写入: %s (%d 张图片)", path, len(manifest))
        return path

    def write_report(self, report: BuildReport) -> Path:
        path = write_json(self.report_path, report.to_dict())
        logger.info("构建报告已写入: %s", path)
        return path
