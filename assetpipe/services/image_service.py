"""图片流水线 — 多格式、多宽度的响应式图片生成

每张源图片是一个独立任务，经并发限流器分发：
  1. 计算指纹 (kind=image)
  2. 带图片校验器查询缓存，命中则直接复用记录的版本列表
  3. 未命中时读取原始尺寸，按「格式 × 宽度」生成缩放后的副本并写入缓存

宽度超过原图的目标尺寸直接跳过（从不放大），全部跳过时记录空版本列表。
完成顺序不确定，但清单按源文件相对路径排序，输出与并发度无关。
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections import defaultdict
from pathlib import Path
from typing import Any, Protocol, Sequence

from PIL import Image

from assetpipe.core.cache import CacheStore
from assetpipe.core.exceptions import TransformError
from assetpipe.core.fingerprint import cache_key, mtime_of
from assetpipe.core.limiter import ConcurrencyLimiter
from assetpipe.core.models import AssetKind, CacheEntry, ImageManifestEntry, ImageVersion
from assetpipe.core.validators import validator_for

logger = logging.getLogger(__name__)

SOURCE_SUFFIXES = (".jpg", ".jpeg", ".png")

ImageManifest = dict[str, list[dict[str, Any]]]


class ImageRenderer(Protocol):
    """图片读写协议 — 探测尺寸 + 缩放重编码"""

    def probe(self, source: Path) -> tuple[int, int]:
        """返回 (宽, 高)"""
        ...

    def render(
        self, source: Path, dest: Path, *,
        width: int, height: int, fmt: str, quality: int,
    ) -> None:
        """缩放到 width×height 并以 fmt 编码写入 dest"""
        ...


class PillowRenderer:
    """基于 Pillow 的默认实现，先写临时文件再 rename"""

    PIL_FORMATS = {"webp": "WEBP", "avif": "AVIF", "jpeg": "JPEG", "png": "PNG"}

    def __init__(self, effort: int = 6) -> None:
        self.effort = effort

    def probe(self, source: Path) -> tuple[int, int]:
        with Image.open(source) as im:
            return im.size

    def _save_options(self, fmt: str, quality: int) -> dict[str, Any]:
        if fmt == "webp":
            return {"quality": quality, "method": self.effort}
        if fmt in ("avif", "jpeg"):
            return {"quality": quality}
        return {"optimize": True}

    def render(
        self, source: Path, dest: Path, *,
        width: int, height: int, fmt: str, quality: int,
    ) -> None:
        pil_format = self.PIL_FORMATS[fmt]
        dest.parent.mkdir(parents=True, exist_ok=True)
        with Image.open(source) as im:
            resized = im.resize((width, height), Image.Resampling.LANCZOS)
        if pil_format == "JPEG" and resized.mode not in ("RGB", "L"):
            resized = resized.convert("RGB")

        fd, tmp = tempfile.mkstemp(dir=str(dest.parent), prefix=f".{dest.name}.", suffix=".tmp")
        os.close(fd)
        try:
            resized.save(tmp, format=pil_format, **self._save_options(fmt, quality))
            os.replace(tmp, dest)
        except Exception:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise


def scaled_height(width: int, src_width: int, src_height: int) -> int:
    """按原图比例计算目标高度（四舍五入，.5 向上）"""
    return int(width * src_height / src_width + 0.5)


class ImagePipeline:
    """图片流水线"""

    name = "image"

    def __init__(
        self,
        cache: CacheStore,
        *,
        source_dir: str | Path,
        output_root: str | Path,
        images_dir: str | Path,
        formats: Sequence[str] = ("webp", "avif"),
        sizes: Sequence[int] = (640, 1024, 1920),
        quality: int = 80,
        limiter: ConcurrencyLimiter | None = None,
        renderer: ImageRenderer | None = None,
    ) -> None:
        self.cache = cache
        self.source_dir = Path(source_dir)
        self.output_root = Path(output_root)
        self.images_dir = Path(images_dir)
        self.formats = list(formats)
        self.sizes = list(sizes)
        self.quality = quality
        self.limiter = limiter or ConcurrencyLimiter(4, name="image")
        self.renderer: ImageRenderer = renderer or PillowRenderer()
        self._validator = validator_for(AssetKind.IMAGE)

    def discover(self) -> list[Path]:
        """递归列出源目录下的 jpg/jpeg/png 文件，按路径排序"""
        if not self.source_dir.is_dir():
            logger.warning("图片源目录不存在: %s", self.source_dir)
            return []
        return sorted(
            p for p in self.source_dir.rglob("*")
            if p.is_file() and p.suffix.lower() in SOURCE_SUFFIXES
        )

    def run(
        self,
        files: Sequence[Path] | None = None,
        abort: threading.Event | None = None,
    ) -> ImageManifest:
        """处理全部图片，返回以相对路径为键的清单"""
        sources = self.discover() if files is None else [Path(f) for f in files]
        logger.info("处理图片: %d 个文件 (并发 %d)", len(sources), self.limiter.limit)
        self.images_dir.mkdir(parents=True, exist_ok=True)
        self._warn_collisions(sources)
        entries = self.limiter.map(self.process_one, sources, abort)
        return {
            e.original: [v.to_dict() for v in e.versions]
            for e in sorted(entries, key=lambda e: e.original)
        }

    def _warn_collisions(self, sources: Sequence[Path]) -> None:
        """输出文件名只取 stem，同名源文件会互相覆盖产物"""
        by_stem: dict[str, list[Path]] = defaultdict(list)
        for source in sources:
            by_stem[source.stem].append(source)
        for stem, group in sorted(by_stem.items()):
            if len(group) > 1:
                logger.warning(
                    "输出文件名冲突: %s 均生成 %s-<宽度>.<格式>，产物会互相覆盖",
                    ", ".join(self._relative(p) for p in group), stem,
                    extra={"pipeline": self.name, "asset": stem},
                )

    def _relative(self, source: Path) -> str:
        try:
            return source.resolve().relative_to(self.source_dir.resolve()).as_posix()
        except ValueError:
            return source.name

    def process_one(self, source: Path) -> ImageManifestEntry:
        """处理单张图片（缓存命中时零转换）"""
        source = Path(source)
        key = cache_key(str(source), AssetKind.IMAGE)
        cached = self.cache.get(key, self._validator)
        if cached is not None:
            logger.info("使用缓存图片: %s", source.name, extra={"pipeline": self.name, "asset": source.name})
            return ImageManifestEntry.from_payload(cached.payload)

        logger.info("处理图片: %s", source.name, extra={"pipeline": self.name, "asset": source.name})
        try:
            timestamp = mtime_of(source)
            src_width, src_height = self.renderer.probe(source)
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise TransformError(f"读取图片信息失败: {e}", pipeline=self.name, source=str(source)) from e

        versions: list[ImageVersion] = []
        for fmt in self.formats:
            for width in self.sizes:
                if width > src_width:
                    continue
                versions.append(self._render_version(source, fmt, width, src_width, src_height))

        entry = ImageManifestEntry(
            original=self._relative(source),
            source=str(source.resolve()),
            timestamp=timestamp,
            output_root=str(self.output_root.resolve()),
            versions=versions,
        )
        if not versions:
            logger.info("图片 %s 宽度 %dpx 小于全部目标尺寸，无输出版本", source.name, src_width)
        self.cache.set(key, CacheEntry(key=key, kind=AssetKind.IMAGE, payload=entry.to_payload()))
        return entry

    def _render_version(
        self, source: Path, fmt: str, width: int, src_width: int, src_height: int,
    ) -> ImageVersion:
        height = scaled_height(width, src_width, src_height)
        dest = self.images_dir / f"{source.stem}-{width}.{fmt}"
        try:
            self.renderer.render(
                source, dest, width=width, height=height, fmt=fmt, quality=self.quality,
            )
        except (OSError, ValueError, KeyError, Image.DecompressionBombError) as e:
            raise TransformError(
                f"生成 {fmt} {width}px 失败: {e}", pipeline=self.name, source=str(source),
            ) from e
        return ImageVersion(
            format=fmt,
            width=width,
            height=height,
            file=self._output_relative(dest),
        )

    def _output_relative(self, dest: Path) -> str:
        try:
            return dest.resolve().relative_to(self.output_root.resolve()).as_posix()
        except ValueError:
            return dest.as_posix()
