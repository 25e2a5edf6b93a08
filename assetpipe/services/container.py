"""服务容器 — 统一依赖注入

由 Config 显式构造一个 CacheStore，并按引用传给所有流水线，不使用模块级缓存单例。
同一容器内的实例共享状态；外部工具执行器、图片渲染器、页面协作方均可注入替换。

依赖关系图（→ 表示依赖）:
  image  → cache, limiter, renderer
  style  → cache, executor
  script → cache, executor
  page   → renderer / validator / minifier

用法:
    container = ServiceContainer(Config.from_file("assetpipe.yml"))
    report = BuildOrchestrator(container).run()
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from assetpipe.utils.shell import CommandExecutor, LocalExecutor

if TYPE_CHECKING:
    from assetpipe.core.cache import CacheStore
    from assetpipe.core.config import Config
    from assetpipe.core.limiter import ConcurrencyLimiter
    from assetpipe.services.image_service import ImagePipeline, ImageRenderer
    from assetpipe.services.manifest_service import ManifestWriter
    from assetpipe.services.page_service import (
        MarkupMinifier,
        MarkupValidator,
        PagePublisher,
        PageRenderer,
    )
    from assetpipe.services.script_service import ScriptPipeline
    from assetpipe.services.style_service import StylePipeline


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        executor: CommandExecutor | None = None,
        image_renderer: ImageRenderer | None = None,
        page_renderer: PageRenderer | None = None,
        markup_validator: MarkupValidator | None = None,
        markup_minifier: MarkupMinifier | None = None,
        work_dir: str | Path = ".",
    ) -> None:
        if config is None:
            from assetpipe.core.config import Config
            config = Config()
        self._config = config
        self._instances: dict[str, object] = {}
        self.executor: CommandExecutor = executor or LocalExecutor()
        self.work_dir = Path(work_dir)
        self._image_renderer = image_renderer
        self._page_renderer = page_renderer
        self._markup_validator = markup_validator
        self._markup_minifier = markup_minifier

    @property
    def config(self) -> Config:
        return self._config

    def path(self, p: str | Path) -> Path:
        """配置中的相对路径均相对工作目录解析"""
        return self.work_dir / p

    # ---- 共享资源 ----

    @property
    def cache(self) -> CacheStore:
        if "cache" not in self._instances:
            from assetpipe.core.cache import CacheStore
            self._instances["cache"] = CacheStore(
                self.path(self._config.cache_dir),
                max_items=self._config.cache_max_items,
                ttl=self._config.cache_ttl,
            )
        return self._instances["cache"]  # type: ignore[return-value]

    @property
    def limiter(self) -> ConcurrencyLimiter:
        if "limiter" not in self._instances:
            from assetpipe.core.limiter import ConcurrencyLimiter
            self._instances["limiter"] = ConcurrencyLimiter(
                self._config.image_concurrency, name="image",
            )
        return self._instances["limiter"]  # type: ignore[return-value]

    # ---- 流水线 ----

    @property
    def image(self) -> ImagePipeline:
        if "image" not in self._instances:
            from assetpipe.services.image_service import ImagePipeline
            cfg = self._config
            self._instances["image"] = ImagePipeline(
                self.cache,
                source_dir=self.path(cfg.images_dir),
                output_root=self.path(cfg.output_root),
                images_dir=self.path(cfg.images_out_dir),
                formats=cfg.image_formats,
                sizes=cfg.image_sizes,
                quality=cfg.image_quality,
                limiter=self.limiter,
                renderer=self._image_renderer,
            )
        return self._instances["image"]  # type: ignore[return-value]

    @property
    def style(self) -> StylePipeline:
        if "style" not in self._instances:
            from assetpipe.services.style_service import PostCSSProcessor, StylePipeline
            cfg = self._config
            processor = PostCSSProcessor(
                cfg.postcss_cmd,
                autoprefixer=cfg.css_autoprefixer,
                minify=cfg.css_minify,
                executor=self.executor,
                cwd=str(self.work_dir),
                timeout=cfg.timeout,
            )
            self._instances["style"] = StylePipeline(
                self.cache,
                css_dir=self.path(cfg.css_out_dir),
                processor=processor,
                bundle_name=cfg.css_bundle_name,
            )
        return self._instances["style"]  # type: ignore[return-value]

    @property
    def script(self) -> ScriptPipeline:
        if "script" not in self._instances:
            from assetpipe.services.script_service import EsbuildBundler, ScriptPipeline
            cfg = self._config
            bundler = EsbuildBundler(
                cfg.esbuild_cmd,
                minify=cfg.js_minify,
                target=cfg.js_target,
                externals=cfg.js_externals,
                executor=self.executor,
                cwd=str(self.work_dir),
                timeout=cfg.timeout,
            )
            self._instances["script"] = ScriptPipeline(
                self.cache,
                output_root=self.path(cfg.output_root),
                js_dir=self.path(cfg.js_out_dir),
                bundler=bundler,
                dependency_manifest=self.path(cfg.dependency_manifest),
                cwd=self.work_dir,
            )
        return self._instances["script"]  # type: ignore[return-value]

    # ---- 页面与清单 ----

    @property
    def page(self) -> PagePublisher:
        if "page" not in self._instances:
            from assetpipe.services.page_service import (
                BasicMarkupValidator,
                PagePublisher,
                ShellPageRenderer,
                WhitespaceMinifier,
            )
            cfg = self._config
            self._instances["page"] = PagePublisher(
                self._page_renderer or ShellPageRenderer(
                    title=cfg.page_title, css_base=f"/{cfg.assets_dir}/css/",
                ),
                self._markup_validator or BasicMarkupValidator(),
                self._markup_minifier or WhitespaceMinifier(),
                force=cfg.force_build,
            )
        return self._instances["page"]  # type: ignore[return-value]

    @property
    def manifest(self) -> ManifestWriter:
        if "manifest" not in self._instances:
            from assetpipe.services.manifest_service import ManifestWriter
            self._instances["manifest"] = ManifestWriter(
                self.path(self._config.manifest_path), self.path(self._config.report_path),
            )
        return self._instances["manifest"]  # type: ignore[return-value]
