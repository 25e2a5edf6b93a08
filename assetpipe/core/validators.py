"""按资源类型划分的缓存校验器

每个校验器都是 (条目, 当前文件系统) 上的纯谓词，只给出结论，不修改任何状态；
删除失效条目由 CacheStore 负责。校验器集合封闭，通过 validator_for(kind) 按类型选择。

  image  — 源文件 mtime 与记录一致，且全部输出版本仍在磁盘上
  style  — 每个输入文件 mtime 与记录一致，且输出文件存在
  script — 同 style 的输入检查，外加依赖描述文件 (package.json) mtime 一致、全部产物存在
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from assetpipe.core.cache import Validator
from assetpipe.core.fingerprint import mtime_of
from assetpipe.core.models import (
    AssetKind,
    CacheEntry,
    ImageManifestEntry,
    ScriptBundleOutput,
    StyleOutput,
)


def _mtime_matches(path: str, recorded: Any) -> bool:
    try:
        return mtime_of(path) == recorded
    except OSError:
        return False


def _inputs_unchanged(inputs: dict[str, int]) -> bool:
    return all(_mtime_matches(f, ts) for f, ts in inputs.items())


def _all_exist(root: str, files: list[str]) -> bool:
    base = Path(root)
    return all((base / f).is_file() for f in files)


def validate_image(entry: CacheEntry) -> bool:
    if entry.kind is not AssetKind.IMAGE:
        return False
    try:
        record = ImageManifestEntry.from_payload(entry.payload)
    except (KeyError, TypeError):
        return False
    if not _mtime_matches(record.source, record.timestamp):
        return False
    return _all_exist(record.output_root, [v.file for v in record.versions])


def validate_style(entry: CacheEntry) -> bool:
    if entry.kind is not AssetKind.STYLE:
        return False
    try:
        record = StyleOutput.from_payload(entry.payload)
    except (KeyError, TypeError):
        return False
    if not record.output or not _inputs_unchanged(record.inputs):
        return False
    return Path(record.output_path).is_file()


def validate_script(entry: CacheEntry) -> bool:
    if entry.kind is not AssetKind.SCRIPT:
        return False
    try:
        record = ScriptBundleOutput.from_payload(entry.payload)
    except (KeyError, TypeError):
        return False
    if not record.outputs or not _inputs_unchanged(record.inputs):
        return False

    # 依赖升级即使源码未变也要使产物失效
    manifest = Path(record.dependency_manifest) if record.dependency_manifest else None
    if manifest is not None and manifest.exists():
        if not _mtime_matches(str(manifest), record.package_time):
            return False
    elif record.package_time is not None:
        return False

    files = list(record.outputs)
    if record.analysis_file:
        files.append(record.analysis_file)
    return _all_exist(record.output_root, files)


VALIDATORS: dict[AssetKind, Validator] = {
    AssetKind.IMAGE: validate_image,
    AssetKind.STYLE: validate_style,
    AssetKind.SCRIPT: validate_script,
}


def validator_for(kind: AssetKind | str) -> Validator:
    """按资源类型取校验器，未知类型抛 ValueError"""
    return VALIDATORS[AssetKind(kind)]
