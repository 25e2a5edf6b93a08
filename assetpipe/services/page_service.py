"""页面生成协作方边界 — 渲染 → 校验 → 压缩 → 写入

页面内容生成、标记校验、压缩都是外部协作方，这里只定义接口并提供默认实现：
  - PageRenderer:    (样式文件名, 脚本产物, 图片清单) → HTML 字符串
  - MarkupValidator: HTML → 问题列表（空列表表示通过）
  - MarkupMinifier:  HTML → 压缩后的 HTML

校验失败默认终止构建；force=True（环境变量 FORCE_BUILD）时记录警告后继续。
"""

from __future__ import annotations

import html
import logging
import re
from html.parser import HTMLParser
from pathlib import Path
from typing import Any, Protocol, Sequence

from assetpipe.core.exceptions import MarkupValidationError
from assetpipe.utils.files import atomic_write

logger = logging.getLogger(__name__)

DEFAULT_RUNTIME_SCRIPTS = (
    "https://unpkg.com/react@18/umd/react.production.min.js",
    "https://unpkg.com/react-dom@18/umd/react-dom.production.min.js",
)

# 首个版本宽度不超过此值的图片才生成预加载提示
PRELOAD_MAX_WIDTH = 1024


class PageRenderer(Protocol):
    def render(
        self, style_file: str, script_files: Sequence[str],
        image_manifest: dict[str, list[dict[str, Any]]],
    ) -> str:
        ...


class MarkupValidator(Protocol):
    def validate(self, markup: str) -> list[str]:
        ...


class MarkupMinifier(Protocol):
    def minify(self, markup: str) -> str:
        ...


# =========================================================================
# 默认渲染器：文档外壳 + 资源预加载
# =========================================================================


class ShellPageRenderer:
    """生成页面外壳，body 内容由 body_html 注入（组件渲染在协作方完成）"""

    def __init__(
        self,
        *,
        title: str = "Static React Site",
        css_base: str = "/assets/css/",
        body_html: str = "",
        runtime_scripts: Sequence[str] = DEFAULT_RUNTIME_SCRIPTS,
    ) -> None:
        self.title = title
        self.css_base = css_base
        self.body_html = body_html
        self.runtime_scripts = list(runtime_scripts)

    @staticmethod
    def _image_preloads(image_manifest: dict[str, list[dict[str, Any]]]) -> list[str]:
        links = []
        for versions in image_manifest.values():
            if not versions or versions[0]["width"] > PRELOAD_MAX_WIDTH:
                continue
            srcset = ", ".join(
                f"/{v['file']} {v['width']}w" for v in versions if v["format"] == "webp"
            )
            links.append(
                f'<link rel="preload" as="image" href="/{html.escape(versions[0]["file"])}"'
                f' imagesrcset="{html.escape(srcset)}">'
            )
        return links

    def render(
        self, style_file: str, script_files: Sequence[str],
        image_manifest: dict[str, list[dict[str, Any]]],
    ) -> str:
        head = [
            '<meta charset="UTF-8">',
            '<meta name="viewport" content="width=device-width, initial-scale=1.0">',
            f"<title>{html.escape(self.title)}</title>",
        ]
        head += [f'<link rel="modulepreload" href="/{html.escape(f)}">' for f in script_files]
        if style_file:
            href = html.escape(self.css_base + style_file)
            head.append(f'<link rel="stylesheet" href="{href}" media="print" onload="this.media=\'all\'">')
        head.append(f'<meta name="description" content="{html.escape(self.title)}">')
        head += self._image_preloads(image_manifest)

        body = [f'<div id="root">{self.body_html}</div>']
        body += [f'<script async src="{html.escape(src)}"></script>' for src in self.runtime_scripts]
        body += [f'<script type="module" src="/{html.escape(f)}"></script>' for f in script_files]

        indent = "\n    "
        return (
            "<!DOCTYPE html>\n"
            '<html lang="en">\n'
            f"<head>{indent}{indent.join(head)}\n</head>\n"
            f"<body>{indent}{indent.join(body)}\n</body>\n"
            "</html>\n"
        )


# =========================================================================
# 默认校验器
# =========================================================================


class _RuleParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.problems: list[str] = []
        self._ids: set[str] = set()
        self._h1 = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        line, _ = self.getpos()
        names = [name for name, _ in attrs]
        dups = sorted({n for n in names if names.count(n) > 1})
        if dups:
            self.problems.append(f"第 {line} 行 <{tag}> 属性重复: {', '.join(dups)}")
        values = dict(attrs)
        element_id = values.get("id")
        if element_id:
            if element_id in self._ids:
                self.problems.append(f"第 {line} 行 id 重复: {element_id}")
            self._ids.add(element_id)
        if tag == "img" and "alt" not in values:
            self.problems.append(f"第 {line} 行 <img> 缺少 alt")
        if "src" in values and not (values["src"] or "").strip():
            self.problems.append(f"第 {line} 行 <{tag}> src 为空")
        if tag == "h1":
            self._h1 += 1
            if self._h1 == 2:
                self.problems.append(f"第 {line} 行出现多个 <h1>")


class BasicMarkupValidator:
    """基于 html.parser 的规则校验：id 唯一、img alt、单个 h1、src 非空、属性不重复"""

    def validate(self, markup: str) -> list[str]:
        parser = _RuleParser()
        parser.feed(markup)
        parser.close()
        return parser.problems


# =========================================================================
# 默认压缩器
# =========================================================================


class WhitespaceMinifier:
    """删除注释和标签间空白，保留 DOCTYPE"""

    _COMMENT = re.compile(r"<!--(?!\[if).*?-->", re.DOTALL)
    _BETWEEN_TAGS = re.compile(r">\s+<")

    def minify(self, markup: str) -> str:
        out = self._COMMENT.sub("", markup)
        out = self._BETWEEN_TAGS.sub("><", out)
        return out.strip()


class PagePublisher:
    """串联渲染、校验、压缩并写入最终页面"""

    def __init__(
        self,
        renderer: PageRenderer,
        validator: MarkupValidator,
        minifier: MarkupMinifier,
        *,
        force: bool = False,
    ) -> None:
        self.renderer = renderer
        self.validator = validator
        self.minifier = minifier
        self.force = force

    def check(self, markup: str) -> bool:
        """校验页面；失败时 force 模式返回 False，否则抛 MarkupValidationError"""
        problems = self.validator.validate(markup)
        if not problems:
            logger.info("HTML 校验通过")
            return True
        for p in problems:
            logger.error("HTML 校验错误: %s", p)
        if not self.force:
            raise MarkupValidationError(
                "HTML 校验失败，设置 FORCE_BUILD=true 可跳过校验", details=problems,
            )
        logger.warning("HTML 校验失败，FORCE_BUILD 已开启，继续构建")
        return False

    def publish(
        self, style_file: str, script_files: Sequence[str],
        image_manifest: dict[str, list[dict[str, Any]]], dest: Path,
    ) -> Path:
        logger.info("生成页面: %s", dest)
        markup = self.renderer.render(style_file, script_files, image_manifest)
        self.check(markup)
        atomic_write(dest, self.minifier.minify(markup))
        return dest
