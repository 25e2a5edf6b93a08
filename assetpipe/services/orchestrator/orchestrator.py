"""构建编排器 — 并行流水线 + 汇总

步骤顺序：
1. prepare   - 删除旧清单/报告，创建输出目录
2. pipelines - 图片、样式、脚本三条流水线并行执行（互不依赖，只共享 CacheStore）
3. page      - 把样式文件名、脚本产物、图片清单交给页面协作方
4. manifest  - 写入图片清单和构建报告

任一流水线失败即终止构建：置位 abort 事件，各流水线尚未开始的任务不再执行，进行中的转换不中断，
其他流水线已写出的产物保留在磁盘上，不写清单和报告，抛出 BuildError。
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Any, Callable

from assetpipe.core.exceptions import BuildError
from assetpipe.core.models import BuildReport
from assetpipe.services.container import ServiceContainer
from assetpipe.services.orchestrator.models import BuildOutcome, PipelineResults

logger = logging.getLogger(__name__)

PIPELINES = ("image", "style", "script")


class BuildOrchestrator:
    """构建编排器"""

    def __init__(self, container: ServiceContainer) -> None:
        self.c = container

    def run(self) -> BuildOutcome:
        """执行一次完整构建，失败时抛 BuildError / MarkupValidationError"""
        start = time.monotonic()
        cfg = self.c.config
        outcome = BuildOutcome()
        logger.info("开始构建: 输出目录 %s", self.c.path(cfg.output_dir))

        self.prepare(outcome)
        results = self.run_pipelines(outcome)

        page = self.c.page.publish(
            results.style_file, results.script_files, results.image_manifest,
            self.c.path(cfg.page_path),
        )
        outcome.steps.append({"step": "page", "status": "done", "file": str(page)})

        self.c.manifest.write_manifest(results.image_manifest)
        duration = time.monotonic() - start
        report = BuildReport(
            duration_seconds=duration,
            js=results.script_files,
            css=results.css_files,
            images=results.image_manifest,
            output_directory=str(cfg.output_dir),
            cache_stats=self.c.cache.stats(),
        )
        self.c.manifest.write_report(report)
        outcome.report = report
        outcome.steps.append({"step": "manifest", "status": "done"})
        logger.info("构建完成，耗时 %.2fs", duration)
        return outcome

    def prepare(self, outcome: BuildOutcome) -> None:
        """清理上次的派生文件并创建输出目录"""
        cfg = self.c.config
        self.c.manifest.reset()
        for d in (cfg.output_root, cfg.js_out_dir, cfg.css_out_dir, cfg.images_out_dir):
            self.c.path(d).mkdir(parents=True, exist_ok=True)
        outcome.steps.append({"step": "prepare", "status": "done"})

    def _tasks(self, abort: threading.Event) -> dict[str, Callable[[], Any]]:
        cfg = self.c.config
        # 在主线程完成懒加载，避免多个线程同时构造共享实例
        image, style, script = self.c.image, self.c.style, self.c.script
        css_files = [str(self.c.path(f)) for f in cfg.css_files]
        return {
            "image": lambda: image.run(abort=abort),
            "style": lambda: style.run(css_files),
            "script": lambda: script.run(cfg.js_entries),
        }

    def run_pipelines(self, outcome: BuildOutcome) -> PipelineResults:
        """并行运行三条流水线，等待全部完成或首个失败"""
        abort = threading.Event()
        tasks = self._tasks(abort)
        with ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="pipeline") as executor:
            futures: dict[str, Future[Any]] = {
                name: executor.submit(fn) for name, fn in tasks.items()
            }
            wait(futures.values(), return_when=FIRST_EXCEPTION)
            failed = [
                name for name in PIPELINES
                if futures[name].done() and futures[name].exception() is not None
            ]
            if failed:
                # 通知仍在运行的流水线放弃尚未开始的任务，退出 with 时只等待进行中的转换
                abort.set()
                name = failed[0]
                exc = futures[name].exception()
                logger.error("%s 流水线失败，终止构建: %s", name, exc)
                outcome.steps.append({"step": "pipelines", "status": "failed", "pipeline": name})
                raise BuildError(f"{name} 流水线失败: {exc}", pipeline=name) from exc

        results = PipelineResults(
            image_manifest=futures["image"].result(),
            style_file=futures["style"].result(),
            scripts=futures["script"].result(),
        )
        outcome.steps.append({
            "step": "pipelines", "status": "done",
            "images": len(results.image_manifest),
            "css": results.css_files,
            "js": results.script_files,
        })
        logger.info(
            "流水线完成: 图片 %d, 样式 %s, 脚本 %d",
            len(results.image_manifest), results.style_file or "-", len(results.script_files),
        )
        return results
