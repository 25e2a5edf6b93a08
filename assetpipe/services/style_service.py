"""样式流水线 — 合并、加前缀、压缩、内容寻址输出

缓存键基于按顺序拼接的文件列表，调整输入顺序即使内容不变也会换键；
下游依赖按顺序拼接的语义，这是有意保留的行为。
输出文件名嵌入产物内容哈希，与缓存键无关。
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Protocol, Sequence

from assetpipe.core.cache import CacheStore
from assetpipe.core.exceptions import TransformError
from assetpipe.core.fingerprint import cache_key, content_hash, mtime_of
from assetpipe.core.models import AssetKind, CacheEntry, StyleOutput
from assetpipe.core.validators import validator_for
from assetpipe.utils.files import atomic_write
from assetpipe.utils.shell import CommandExecutor, LocalExecutor, run_cmd, split_command

logger = logging.getLogger(__name__)


class StyleProcessor(Protocol):
    """样式处理协议 — 输入合并后的 CSS，返回处理后的 CSS"""

    def process(self, css: str) -> str:
        ...


class PostCSSProcessor:
    """调用外部 postcss，按配置启用 autoprefixer / cssnano"""

    def __init__(
        self,
        command: str | list[str] = "npx postcss",
        *,
        autoprefixer: bool = True,
        minify: bool = True,
        executor: CommandExecutor | None = None,
        cwd: str = ".",
        timeout: int | None = None,
    ) -> None:
        self.command = split_command(command)
        self.autoprefixer = autoprefixer
        self.minify = minify
        self.executor: CommandExecutor = executor or LocalExecutor()
        self.cwd = cwd
        self.timeout = timeout

    def build_command(self, src: Path, dest: Path) -> list[str]:
        cmd = [*self.command, str(src), "-o", str(dest), "--no-map"]
        if self.autoprefixer:
            cmd += ["--use", "autoprefixer"]
        if self.minify:
            cmd += ["--use", "cssnano"]
        return cmd

    def process(self, css: str) -> str:
        with tempfile.TemporaryDirectory(prefix="assetpipe-css-") as tmp:
            src = Path(tmp) / "input.css"
            dest = Path(tmp) / "output.css"
            src.write_text(css, encoding="utf-8")
            run_cmd(
                self.build_command(src, dest),
                executor=self.executor, cwd=self.cwd, timeout=self.timeout,
                pipeline="style", label="postcss",
            )
            try:
                return dest.read_text(encoding="utf-8")
            except OSError as e:
                raise TransformError(f"postcss 未生成输出: {e}", pipeline="style") from e


class StylePipeline:
    """样式流水线"""

    name = "style"

    def __init__(
        self,
        cache: CacheStore,
        *,
        css_dir: str | Path,
        processor: StyleProcessor,
        bundle_name: str = "main",
    ) -> None:
        self.cache = cache
        self.css_dir = Path(css_dir)
        self.processor = processor
        self.bundle_name = bundle_name
        self._validator = validator_for(AssetKind.STYLE)

    def run(self, files: Sequence[str]) -> str:
        """处理样式文件列表，返回输出文件名（无输入时返回空串）"""
        files = [str(f) for f in files]
        if not files:
            logger.warning("未配置样式文件，跳过样式处理")
            return ""

        key = cache_key(":".join(files), AssetKind.STYLE)
        cached = self.cache.get(key, self._validator)
        if cached is not None:
            output = StyleOutput.from_payload(cached.payload).output
            logger.info("使用缓存样式: %s", output, extra={"pipeline": self.name})
            return output

        logger.info("处理样式: %d 个文件", len(files), extra={"pipeline": self.name})
        inputs: dict[str, int] = {}
        contents: list[str] = []
        for f in files:
            try:
                inputs[str(Path(f).resolve())] = mtime_of(f)
                contents.append(Path(f).read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError) as e:
                raise TransformError(f"读取样式失败: {e}", pipeline=self.name, source=f) from e

        css = self.processor.process("\n".join(contents))
        file_name = f"{self.bundle_name}.{content_hash(css)}.css"
        dest = self.css_dir / file_name
        try:
            atomic_write(dest, css)
        except OSError as e:
            raise TransformError(f"写入样式失败: {e}", pipeline=self.name, source=str(dest)) from e

        record = StyleOutput(inputs=inputs, output=file_name, output_path=str(dest.resolve()))
        self.cache.set(key, CacheEntry(key=key, kind=AssetKind.STYLE, payload=record.to_payload()))
        logger.info("样式已生成: %s", file_name, extra={"pipeline": self.name})
        return file_name
