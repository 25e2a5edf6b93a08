"""编排器数据模型

数据类：
- PipelineResults: 三条流水线的产物汇总
- BuildOutcome: 一次成功构建的报告与步骤记录
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from assetpipe.core.models import BuildReport, ScriptBundleOutput


@dataclass
class PipelineResults:
    """三条流水线的产物"""

    style_file: str = ""
    scripts: ScriptBundleOutput | None = None
    image_manifest: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    @property
    def script_files(self) -> list[str]:
        return list(self.scripts.outputs) if self.scripts else []

    @property
    def css_files(self) -> list[str]:
        return [self.style_file] if self.style_file else []


@dataclass
class BuildOutcome:
    """构建结果"""

    report: BuildReport | None = None
    steps: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.report is not None and self.report.status == "complete"
