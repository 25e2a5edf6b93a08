"""脚本流水线 — 整体打包 + 代码分割 + 打包分析报告

入口文件交给打包器（默认外部 esbuild）生成 ESM 产物，
共享运行时依赖（默认 react / react-dom）作为 external 不打入产物。
缓存记录所有参与打包的源文件 mtime 以及依赖描述文件 (package.json) 的 mtime，
依赖升级时即使源码未变也会重新打包。
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path
from typing import Any, Protocol, Sequence

from assetpipe.core.cache import CacheStore
from assetpipe.core.exceptions import TransformError
from assetpipe.core.fingerprint import cache_key, mtime_of
from assetpipe.core.models import AssetKind, CacheEntry, ScriptBundleOutput
from assetpipe.core.validators import validator_for
from assetpipe.utils.files import atomic_write
from assetpipe.utils.shell import CommandExecutor, LocalExecutor, run_cmd, split_command

logger = logging.getLogger(__name__)

ANALYSIS_FILE = "bundle-analysis.txt"

DEFAULT_LOADERS = {".js": "jsx", ".svg": "dataurl"}


class ScriptBundler(Protocol):
    """打包器协议 — 执行打包并返回 esbuild 格式的 metafile"""

    def bundle(self, entries: Sequence[str], outdir: Path) -> dict[str, Any]:
        ...


class EsbuildBundler:
    """调用外部 esbuild 打包（--bundle --splitting --format=esm）"""

    def __init__(
        self,
        command: str | list[str] = "npx esbuild",
        *,
        minify: bool = True,
        target: Sequence[str] = ("es2020",),
        externals: Sequence[str] = ("react", "react-dom"),
        loaders: dict[str, str] | None = None,
        executor: CommandExecutor | None = None,
        cwd: str = ".",
        timeout: int | None = None,
    ) -> None:
        self.command = split_command(command)
        self.minify = minify
        self.target = list(target)
        self.externals = list(externals)
        self.loaders = DEFAULT_LOADERS if loaders is None else loaders
        self.executor: CommandExecutor = executor or LocalExecutor()
        self.cwd = cwd
        self.timeout = timeout

    def build_command(self, entries: Sequence[str], outdir: Path, metafile: Path) -> list[str]:
        cmd = [
            *self.command, *entries,
            "--bundle", "--splitting", "--format=esm",
            f"--outdir={outdir}", f"--metafile={metafile}",
        ]
        if self.target:
            cmd.append(f"--target={','.join(self.target)}")
        if self.minify:
            cmd.append("--minify")
        cmd += [f"--external:{name}" for name in self.externals]
        cmd += [f"--loader:{ext}={loader}" for ext, loader in self.loaders.items()]
        return cmd

    def bundle(self, entries: Sequence[str], outdir: Path) -> dict[str, Any]:
        with tempfile.TemporaryDirectory(prefix="assetpipe-js-") as tmp:
            metafile = Path(tmp) / "meta.json"
            run_cmd(
                self.build_command(entries, outdir, metafile),
                executor=self.executor, cwd=self.cwd, timeout=self.timeout,
                pipeline="script", source=",".join(entries), label="esbuild",
            )
            try:
                meta: dict[str, Any] = json.loads(metafile.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise TransformError(f"读取 metafile 失败: {e}", pipeline="script") from e
        return meta


# =========================================================================
# 打包分析报告
# =========================================================================


def _fmt_size(n: float) -> str:
    if n < 1024:
        return f"{int(n)}b"
    if n < 1024 * 1024:
        return f"{n / 1024:.1f}kb"
    return f"{n / (1024 * 1024):.1f}mb"


def analyze_metafile(meta: dict[str, Any]) -> str:
    """生成人类可读的打包分析：每个产物的大小及各输入贡献占比"""
    outputs: dict[str, Any] = meta.get("outputs", {})
    if not outputs:
        return "(no outputs)\n"
    lines: list[str] = []
    for out_path, info in sorted(outputs.items(), key=lambda kv: (-kv[1].get("bytes", 0), kv[0])):
        total = info.get("bytes", 0)
        lines.append(f"  {out_path}  {_fmt_size(total)}  100.0%")
        contributions = sorted(
            info.get("inputs", {}).items(),
            key=lambda kv: (-kv[1].get("bytesInOutput", 0), kv[0]),
        )
        for i, (in_path, in_info) in enumerate(contributions):
            size = in_info.get("bytesInOutput", 0)
            pct = size * 100.0 / total if total else 0.0
            branch = "└" if i == len(contributions) - 1 else "├"
            lines.append(f"   {branch} {in_path}  {_fmt_size(size)}  {pct:.1f}%")
        lines.append("")
    return "\n".join(lines)


class ScriptPipeline:
    """脚本流水线"""

    name = "script"

    def __init__(
        self,
        cache: CacheStore,
        *,
        output_root: str | Path,
        js_dir: str | Path,
        bundler: ScriptBundler,
        dependency_manifest: str | Path = "package.json",
        cwd: str | Path = ".",
    ) -> None:
        self.cache = cache
        self.output_root = Path(output_root)
        self.js_dir = Path(js_dir)
        self.bundler = bundler
        self.dependency_manifest = Path(dependency_manifest)
        self.cwd = Path(cwd)
        self._validator = validator_for(AssetKind.SCRIPT)

    @property
    def analysis_path(self) -> Path:
        return self.output_root / ANALYSIS_FILE

    def run(self, entries: Sequence[str]) -> ScriptBundleOutput:
        """打包入口文件，返回产物列表（相对构建输出根目录）"""
        entries = [str(e) for e in entries]
        if not entries:
            logger.warning("未配置脚本入口，跳过脚本打包")
            return ScriptBundleOutput(entries=[], outputs=[])

        key = cache_key(":".join(entries), AssetKind.SCRIPT)
        cached = self.cache.get(key, self._validator)
        if cached is not None:
            logger.info("使用缓存脚本产物: %s", ", ".join(entries), extra={"pipeline": self.name})
            return ScriptBundleOutput.from_payload(cached.payload)

        for entry in entries:
            p = self.cwd / entry
            if not p.is_file():
                raise TransformError("入口文件不存在或不可读", pipeline=self.name, source=entry)
            try:
                with open(p, "rb"):
                    pass
            except OSError as e:
                raise TransformError(f"入口文件不可读: {e}", pipeline=self.name, source=entry) from e

        logger.info("打包脚本: %s", ", ".join(entries), extra={"pipeline": self.name})
        self.js_dir.mkdir(parents=True, exist_ok=True)
        meta = self.bundler.bundle(entries, self.js_dir)

        outputs = self._collect_outputs(meta)
        if not outputs:
            raise TransformError("打包器未生成任何产物", pipeline=self.name, source=",".join(entries))
        try:
            atomic_write(self.analysis_path, analyze_metafile(meta))
        except OSError as e:
            raise TransformError(f"写入打包分析失败: {e}", pipeline=self.name) from e

        record = ScriptBundleOutput(
            entries=entries,
            outputs=outputs,
            inputs=self._collect_inputs(meta),
            dependency_manifest=str(self.dependency_manifest.resolve()),
            package_time=self._package_time(),
            analysis_file=ANALYSIS_FILE,
            output_root=str(self.output_root.resolve()),
        )
        self.cache.set(key, CacheEntry(key=key, kind=AssetKind.SCRIPT, payload=record.to_payload()))
        logger.info("脚本打包完成: %d 个产物", len(outputs), extra={"pipeline": self.name})
        return record

    def _resolve(self, path: str) -> Path:
        p = Path(path)
        return (p if p.is_absolute() else self.cwd / p).resolve()

    def _collect_outputs(self, meta: dict[str, Any]) -> list[str]:
        root = self.output_root.resolve()
        outputs: list[str] = []
        for out_path in meta.get("outputs", {}):
            if out_path.endswith(".map"):
                continue
            resolved = self._resolve(out_path)
            try:
                outputs.append(resolved.relative_to(root).as_posix())
            except ValueError:
                outputs.append(resolved.as_posix())
        return sorted(outputs)

    def _collect_inputs(self, meta: dict[str, Any]) -> dict[str, int]:
        """记录参与打包的真实源文件 mtime，虚拟命名空间输入（如 dataurl）不是文件，自然跳过"""
        inputs: dict[str, int] = {}
        for in_path in meta.get("inputs", {}):
            resolved = self._resolve(in_path)
            if resolved.is_file():
                inputs[str(resolved)] = mtime_of(resolved)
        return inputs

    def _package_time(self) -> int | None:
        try:
            return mtime_of(self.dependency_manifest)
        except OSError:
            return None
