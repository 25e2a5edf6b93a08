"""图片流水线测试"""

import logging
from pathlib import Path

import pytest
from PIL import Image

from assetpipe.core.cache import CacheStore
from assetpipe.core.exceptions import TransformError
from assetpipe.core.limiter import ConcurrencyLimiter
from assetpipe.services.image_service import ImagePipeline, PillowRenderer, scaled_height


def _pipeline(tmp_path: Path, renderer, **kwargs) -> ImagePipeline:
    kwargs.setdefault("formats", ["webp", "avif"])
    kwargs.setdefault("sizes", [640, 1024, 1920])
    return ImagePipeline(
        CacheStore(tmp_path / ".cache"),
        source_dir=tmp_path / "images",
        output_root=tmp_path / "build",
        images_dir=tmp_path / "build" / "assets" / "images",
        renderer=renderer,
        **kwargs,
    )


class FailingRenderer:
    def probe(self, source: Path) -> tuple[int, int]:
        return (800, 600)

    def render(self, source, dest, *, width, height, fmt, quality) -> None:
        raise OSError("encoder unavailable")


class BombRenderer:
    """尺寸超过 Pillow 像素上限的替身"""

    def __init__(self, on_probe: bool) -> None:
        self.on_probe = on_probe

    def probe(self, source: Path) -> tuple[int, int]:
        if self.on_probe:
            raise Image.DecompressionBombError("image size exceeds limit")
        return (800, 600)

    def render(self, source, dest, *, width, height, fmt, quality) -> None:
        raise Image.DecompressionBombError("image size exceeds limit")


def test_scaled_height() -> None:
    assert scaled_height(640, 2000, 1000) == 320
    assert scaled_height(1024, 2000, 1000) == 512
    assert scaled_height(3, 2, 1) == 2  # 1.5 向上取整


class TestImagePipeline:
    def test_skips_upscaling(self, tmp_path: Path, png, counting_renderer) -> None:
        """只跳过超过原图宽度的尺寸，等于或小于原图宽度的都生成"""
        png(tmp_path / "images" / "wide.png", 4, 2)
        counting_renderer.sizes["wide.png"] = (2000, 1000)
        manifest = _pipeline(tmp_path, counting_renderer).run()

        versions = manifest["wide.png"]
        assert [(v["format"], v["width"], v["height"]) for v in versions] == [
            ("webp", 640, 320), ("webp", 1024, 512), ("webp", 1920, 960),
            ("avif", 640, 320), ("avif", 1024, 512), ("avif", 1920, 960),
        ]

    def test_partial_widths(self, tmp_path: Path, png, counting_renderer) -> None:
        """1920 超过原图宽度被跳过：640/1024 × webp/avif 共 4 个版本"""
        png(tmp_path / "images" / "mid.png", 4, 2)
        counting_renderer.sizes["mid.png"] = (1500, 1000)
        manifest = _pipeline(tmp_path, counting_renderer).run()
        versions = manifest["mid.png"]
        assert len(versions) == 4
        assert {v["width"] for v in versions} == {640, 1024}
        assert versions[0]["file"] == "assets/images/mid-640.webp"
        assert (tmp_path / "build" / "assets" / "images" / "mid-1024.avif").is_file()

    def test_small_image_has_no_versions(self, tmp_path: Path, png, counting_renderer) -> None:
        png(tmp_path / "images" / "tiny.png", 100, 50)
        manifest = _pipeline(tmp_path, counting_renderer).run()
        assert manifest == {"tiny.png": []}
        assert counting_renderer.renders == []

    def test_cache_hit_renders_nothing(self, tmp_path: Path, png, counting_renderer) -> None:
        png(tmp_path / "images" / "a.png", 64, 32)
        pipeline = _pipeline(tmp_path, counting_renderer, sizes=[16, 32])
        first = pipeline.run()
        rendered = len(counting_renderer.renders)
        assert rendered == 4

        second = pipeline.run()
        assert second == first
        assert len(counting_renderer.renders) == rendered

    def test_touched_source_rerenders(self, tmp_path: Path, png, touch, counting_renderer) -> None:
        png(tmp_path / "images" / "a.png", 64, 32)
        png(tmp_path / "images" / "b.png", 64, 32)
        pipeline = _pipeline(tmp_path, counting_renderer, formats=["webp"], sizes=[16])
        pipeline.run()
        touch(tmp_path / "images" / "a.png")
        counting_renderer.renders.clear()
        pipeline.run()
        assert [r[0] for r in counting_renderer.renders] == ["a.png"]

    def test_deleted_output_rerenders(self, tmp_path: Path, png, counting_renderer) -> None:
        png(tmp_path / "images" / "a.png", 64, 32)
        pipeline = _pipeline(tmp_path, counting_renderer, formats=["webp"], sizes=[16])
        pipeline.run()
        (tmp_path / "build" / "assets" / "images" / "a-16.webp").unlink()
        pipeline.run()
        assert len(counting_renderer.renders) == 2

    def test_manifest_independent_of_concurrency(self, tmp_path: Path, png, counting_renderer) -> None:
        for i in range(6):
            png(tmp_path / "images" / f"sub{i % 2}" / f"img{i}.png", 40 + i, 20)
        serial = _pipeline(tmp_path / "serial", counting_renderer, sizes=[16, 32],
                           limiter=ConcurrencyLimiter(1))
        serial.source_dir = tmp_path / "images"
        parallel = _pipeline(tmp_path / "parallel", counting_renderer, sizes=[16, 32],
                             limiter=ConcurrencyLimiter(4))
        parallel.source_dir = tmp_path / "images"

        a, b = serial.run(), parallel.run()
        assert a == b
        assert list(a) == sorted(a)
        assert "sub0/img0.png" in a

    def test_discover_filters_and_sorts(self, tmp_path: Path, png, counting_renderer) -> None:
        png(tmp_path / "images" / "b.png", 10, 10)
        png(tmp_path / "images" / "a.png", 10, 10)
        (tmp_path / "images" / "notes.txt").write_text("x")
        (tmp_path / "images" / "c.JPG").write_bytes(b"")
        names = [p.name for p in _pipeline(tmp_path, counting_renderer).discover()]
        assert names == ["a.png", "b.png", "c.JPG"]

    def test_missing_source_dir(self, tmp_path: Path, counting_renderer) -> None:
        assert _pipeline(tmp_path, counting_renderer).run() == {}

    def test_render_failure_raises(self, tmp_path: Path, png) -> None:
        png(tmp_path / "images" / "a.png", 10, 10)
        with pytest.raises(TransformError) as exc_info:
            _pipeline(tmp_path, FailingRenderer()).run()
        assert exc_info.value.pipeline == "image"
        assert "a.png" in exc_info.value.source

    def test_unreadable_image_raises(self, tmp_path: Path) -> None:
        bad = tmp_path / "images" / "broken.png"
        bad.parent.mkdir(parents=True)
        bad.write_bytes(b"not an image")
        with pytest.raises(TransformError, match="读取图片信息失败"):
            _pipeline(tmp_path, PillowRenderer()).run()

    def test_oversized_image_on_probe(self, tmp_path: Path, png) -> None:
        png(tmp_path / "images" / "huge.png", 10, 10)
        with pytest.raises(TransformError, match="读取图片信息失败") as exc_info:
            _pipeline(tmp_path, BombRenderer(on_probe=True)).run()
        assert exc_info.value.pipeline == "image"
        assert "huge.png" in exc_info.value.source
        assert isinstance(exc_info.value.__cause__, Image.DecompressionBombError)

    def test_oversized_image_on_render(self, tmp_path: Path, png) -> None:
        png(tmp_path / "images" / "huge.png", 10, 10)
        with pytest.raises(TransformError, match="webp 640px") as exc_info:
            _pipeline(tmp_path, BombRenderer(on_probe=False)).run()
        assert exc_info.value.pipeline == "image"
        assert "huge.png" in exc_info.value.source

    def test_same_stem_warns(self, tmp_path: Path, png, counting_renderer, caplog) -> None:
        png(tmp_path / "images" / "a" / "hero.png", 40, 20)
        png(tmp_path / "images" / "b" / "hero.png", 40, 20)
        png(tmp_path / "images" / "logo.png", 40, 20)
        with caplog.at_level(logging.WARNING, logger="assetpipe.services.image_service"):
            _pipeline(tmp_path, counting_renderer, formats=["webp"], sizes=[16]).run()
        conflicts = [r.getMessage() for r in caplog.records if "输出文件名冲突" in r.getMessage()]
        assert len(conflicts) == 1
        assert "a/hero.png" in conflicts[0]
        assert "b/hero.png" in conflicts[0]

    def test_distinct_stems_do_not_warn(self, tmp_path: Path, png, counting_renderer,
                                        caplog) -> None:
        png(tmp_path / "images" / "hero.png", 40, 20)
        png(tmp_path / "images" / "logo.png", 40, 20)
        with caplog.at_level(logging.WARNING, logger="assetpipe.services.image_service"):
            _pipeline(tmp_path, counting_renderer, formats=["webp"], sizes=[16]).run()
        assert "输出文件名冲突" not in caplog.text


class TestPillowRenderer:
    def test_real_encode(self, tmp_path: Path, png) -> None:
        png(tmp_path / "images" / "photo.png", 120, 60, "green")
        pipeline = _pipeline(tmp_path, PillowRenderer(), formats=["webp", "png"], sizes=[32, 64])
        manifest = pipeline.run()

        assert len(manifest["photo.png"]) == 4
        out = tmp_path / "build" / "assets" / "images" / "photo-64.webp"
        with Image.open(out) as im:
            assert im.format == "WEBP"
            assert im.size == (64, 32)
        with Image.open(tmp_path / "build" / "assets" / "images" / "photo-32.png") as im:
            assert im.size == (32, 16)

    def test_jpeg_from_rgba(self, tmp_path: Path) -> None:
        src = tmp_path / "alpha.png"
        Image.new("RGBA", (40, 40), (255, 0, 0, 128)).save(src)
        dest = tmp_path / "out" / "alpha-20.jpeg"
        PillowRenderer().render(src, dest, width=20, height=20, fmt="jpeg", quality=70)
        with Image.open(dest) as im:
            assert im.mode == "RGB"
        assert [p.name for p in dest.parent.iterdir()] == ["alpha-20.jpeg"]
