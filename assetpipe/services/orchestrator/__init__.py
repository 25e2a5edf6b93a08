"""构建编排器模块

拆分说明：
- models.py: 流水线结果与编排报告
- orchestrator.py: 并行运行三条流水线、页面生成、清单与报告写入
"""

from assetpipe.services.orchestrator.models import BuildOutcome, PipelineResults
from assetpipe.services.orchestrator.orchestrator import BuildOrchestrator

__all__ = [
    "BuildOutcome",
    "BuildOrchestrator",
    "PipelineResults",
]
