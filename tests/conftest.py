"""测试共享 fixture — 示例工程布局 + 外部工具替身

外部工具（postcss / esbuild）通过 FakeExecutor 模拟：按真实命令行参数写出产物，
图片渲染可用 CountingRenderer 记录调用次数，无需真实编码。
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path

import pytest
from PIL import Image

from assetpipe.core.config import Config
from assetpipe.services.container import ServiceContainer
from assetpipe.utils.shell import CommandResult


class FakeExecutor:
    """模拟 postcss / esbuild 的命令执行器"""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.fail_with: dict[str, str] = {}   # 工具名 -> stderr，命中时返回 rc=1
        self._lock = threading.Lock()

    def count(self, tool: str) -> int:
        return sum(1 for c in self.calls if tool in " ".join(c[:2]))

    def execute(self, cmd, *, cwd=".", env=None, timeout=None) -> CommandResult:
        with self._lock:
            self.calls.append(list(cmd))
        joined = " ".join(cmd[:2])
        for tool, stderr in self.fail_with.items():
            if tool in joined:
                return CommandResult(returncode=1, stdout="", stderr=stderr)
        if "postcss" in joined:
            return self._postcss(cmd)
        if "esbuild" in joined:
            return self._esbuild(cmd, cwd)
        return CommandResult(returncode=127, stdout="", stderr="unknown tool")

    @staticmethod
    def _postcss(cmd: list[str]) -> CommandResult:
        src = Path(cmd[cmd.index("-o") - 1])
        dest = Path(cmd[cmd.index("-o") + 1])
        css = src.read_text(encoding="utf-8")
        if "cssnano" in cmd:
            css = "".join(line.strip() for line in css.splitlines())
        dest.write_text(css, encoding="utf-8")
        return CommandResult(returncode=0, stdout="", stderr="")

    @staticmethod
    def _esbuild(cmd: list[str], cwd: str) -> CommandResult:
        opts = {a.split("=", 1)[0]: a.split("=", 1)[1] for a in cmd if a.startswith("--") and "=" in a}
        entries = [a for a in cmd[2:] if not a.startswith("--")]
        outdir = Path(opts["--outdir"])
        outdir.mkdir(parents=True, exist_ok=True)
        outputs: dict[str, dict] = {}
        inputs: dict[str, dict] = {}
        for entry in entries:
            src = Path(cwd) / entry
            code = src.read_text(encoding="utf-8")
            out = outdir / f"{src.stem}.js"
            out.write_text(f"// bundle\n{code}", encoding="utf-8")
            rel_out = os.path.relpath(out, cwd)
            inputs[entry] = {"bytes": len(code), "imports": []}
            outputs[rel_out] = {
                "bytes": len(code) + 10,
                "entryPoint": entry,
                "inputs": {entry: {"bytesInOutput": len(code)}},
            }
        chunk = outdir / "chunk-SHARED.js"
        chunk.write_text("export const shared = 1;", encoding="utf-8")
        outputs[os.path.relpath(chunk, cwd)] = {"bytes": 24, "inputs": {}}
        Path(opts["--metafile"]).write_text(
            json.dumps({"inputs": inputs, "outputs": outputs}), encoding="utf-8",
        )
        return CommandResult(returncode=0, stdout="", stderr="")


class CountingRenderer:
    """记录调用的图片渲染器替身，尺寸可按文件名指定"""

    def __init__(self, sizes: dict[str, tuple[int, int]] | None = None) -> None:
        self.sizes = sizes or {}
        self.renders: list[tuple[str, str, int, int]] = []
        self._lock = threading.Lock()

    def probe(self, source: Path) -> tuple[int, int]:
        if source.name in self.sizes:
            return self.sizes[source.name]
        with Image.open(source) as im:
            return im.size

    def render(self, source, dest, *, width, height, fmt, quality) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(f"{fmt}:{width}x{height}:q{quality}".encode())
        with self._lock:
            self.renders.append((source.name, fmt, width, height))


def write_png(path: Path, width: int, height: int, color: str = "red") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", (width, height), color).save(path, format="PNG")
    return path


def bump_mtime(path: Path, seconds: int = 10) -> None:
    """把文件 mtime 向后拨，保证与记录值不同"""
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + seconds * 1_000_000_000))


@pytest.fixture()
def png():
    """PNG 生成器: png(path, width, height, color="red")"""
    return write_png


@pytest.fixture()
def touch():
    """mtime 后拨器: touch(path, seconds=10)"""
    return bump_mtime


@pytest.fixture()
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture()
def counting_renderer() -> CountingRenderer:
    return CountingRenderer()


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    """最小示例工程：一个入口脚本、两份样式、两张图片、package.json"""
    (tmp_path / "src" / "styles").mkdir(parents=True)
    (tmp_path / "src" / "hydrate.js").write_text("import React from 'react';\nconsole.log('hi');\n")
    (tmp_path / "src" / "styles" / "main.css").write_text("body {\n  margin: 0;\n}\n")
    (tmp_path / "src" / "styles" / "extra.css").write_text("h1 {\n  color: red;\n}\n")
    (tmp_path / "package.json").write_text('{"name": "site"}')
    write_png(tmp_path / "public" / "images" / "hero.png", 80, 40)
    write_png(tmp_path / "public" / "images" / "icons" / "logo.png", 20, 20, "blue")
    return tmp_path


@pytest.fixture()
def project_config() -> Config:
    return Config(
        css_files=["src/styles/main.css", "src/styles/extra.css"],
        image_formats=["webp", "png"],
        image_sizes=[16, 32, 64],
        image_concurrency=2,
    )


@pytest.fixture()
def make_container(project: Path, project_config: Config, fake_executor: FakeExecutor):
    """容器工厂：每次调用都新建容器（模拟新进程），共享同一磁盘缓存"""

    def _make(config: Config | None = None, **kwargs) -> ServiceContainer:
        kwargs.setdefault("executor", fake_executor)
        return ServiceContainer(config or project_config, work_dir=project, **kwargs)

    return _make
