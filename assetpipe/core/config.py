"""集中配置管理

输入源、输出布局、缓存参数、各流水线选项集中在 Config 中。
支持从 YAML 文件加载 + 环境变量覆盖 + 编程式覆盖。
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from assetpipe.core.exceptions import ConfigError
from assetpipe.utils.files import load_yaml

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_FORMATS = ("webp", "avif", "jpeg", "png")

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class Config:
    """构建配置"""

    # 输入
    js_entries: list[str] = field(default_factory=lambda: ["src/hydrate.js"])
    css_files: list[str] = field(default_factory=lambda: ["src/styles/main.css"])
    images_dir: str = "public/images"

    # 输出
    output_dir: str = "build"
    assets_dir: str = "assets"

    # 缓存
    cache_dir: str = ".build-cache"
    cache_max_items: int = 500
    cache_ttl: float = 3600.0

    # 图片
    image_formats: list[str] = field(default_factory=lambda: ["webp", "avif"])
    image_sizes: list[int] = field(default_factory=lambda: [640, 1024, 1920])
    image_quality: int = 80
    image_concurrency: int = 4

    # 样式
    css_bundle_name: str = "main"
    css_minify: bool = True
    css_autoprefixer: bool = True
    postcss_cmd: str = "npx postcss"

    # 脚本
    js_minify: bool = True
    js_target: list[str] = field(default_factory=lambda: ["es2020"])
    js_externals: list[str] = field(default_factory=lambda: ["react", "react-dom"])
    esbuild_cmd: str = "npx esbuild"
    dependency_manifest: str = "package.json"

    # 页面
    page_title: str = "Static React Site"
    force_build: bool = False

    # 单个外部转换的超时（秒），0 表示不限制
    transform_timeout: int = 0

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str | Path = "assetpipe.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"配置文件读取失败: {path}: {e}") from e
        if not data:
            return cls()
        known = {f.name for f in fields(cls)} - {"extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置项无效: {e}") from e
        cfg.extra = extra
        logger.info("配置已加载: %s", path)
        return cfg

    def apply_env(self, environ: dict[str, str] | None = None) -> Config:
        """环境变量覆盖：FORCE_BUILD 允许校验失败时继续构建"""
        env = os.environ if environ is None else environ
        if env.get("FORCE_BUILD", "").strip().lower() in _TRUTHY:
            self.force_build = True
        return self

    def validate(self) -> Config:
        """校验配置取值，无效时抛 ConfigError"""
        errors: list[str] = []
        unknown = [f for f in self.image_formats if f not in SUPPORTED_IMAGE_FORMATS]
        if unknown:
            errors.append(f"不支持的图片格式: {unknown}（可用: {list(SUPPORTED_IMAGE_FORMATS)}）")
        if any(not isinstance(w, int) or w <= 0 for w in self.image_sizes):
            errors.append(f"图片宽度必须为正整数: {self.image_sizes}")
        if not 1 <= self.image_quality <= 100:
            errors.append(f"图片质量须在 1-100 之间: {self.image_quality}")
        if self.image_concurrency < 1:
            errors.append(f"图片并发数至少为 1: {self.image_concurrency}")
        if self.cache_max_items < 1:
            errors.append(f"缓存条目上限至少为 1: {self.cache_max_items}")
        if self.transform_timeout < 0:
            errors.append(f"转换超时不能为负: {self.transform_timeout}")
        if errors:
            raise ConfigError("; ".join(errors))
        return self

    # ---- 输出布局 ----

    @property
    def output_root(self) -> Path:
        return Path(self.output_dir)

    @property
    def js_out_dir(self) -> Path:
        return self.output_root / self.assets_dir / "js"

    @property
    def css_out_dir(self) -> Path:
        return self.output_root / self.assets_dir / "css"

    @property
    def images_out_dir(self) -> Path:
        return self.output_root / self.assets_dir / "images"

    @property
    def manifest_path(self) -> Path:
        return self.output_root / "image-manifest.json"

    @property
    def report_path(self) -> Path:
        return self.output_root / "build-report.json"

    @property
    def page_path(self) -> Path:
        return self.output_root / "index.html"

    @property
    def timeout(self) -> int | None:
        return self.transform_timeout or None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
