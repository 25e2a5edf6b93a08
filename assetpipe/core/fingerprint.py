"""缓存指纹生成

cache_key(identifier, kind):
  - identifier 指向已存在的文件：取 (绝对路径, mtime, kind) 计算摘要，不读取文件内容
  - 否则把 identifier 视为字面内容：取 (内容, kind) 计算摘要

纯函数，不含随机量或进程相关盐值，跨进程、跨运行结果一致。
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

from assetpipe.core.models import AssetKind


def mtime_of(path: str | Path) -> int:
    """文件修改时间（纳秒整数），记录与复查统一使用此精度"""
    return os.stat(path).st_mtime_ns


def _existing_file(identifier: str) -> Path | None:
    if not identifier:
        return None
    try:
        p = Path(identifier)
        return p if p.is_file() else None
    except (OSError, ValueError):
        # 超长或含 NUL 的字符串不可能是路径，按内容处理
        return None


def cache_key(identifier: str, kind: AssetKind | str) -> str:
    """生成 64 位十六进制 SHA-256 缓存键"""
    tag = kind.value if isinstance(kind, AssetKind) else str(kind)
    path = _existing_file(identifier)
    if path is not None:
        material = f"{path.resolve()}:{mtime_of(path)}:{tag}"
    else:
        material = f"{identifier}:{tag}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def content_hash(content: str | bytes, length: int = 8) -> str:
    """产物内容哈希，用于内容寻址的输出文件名"""
    data = content.encode("utf-8") if isinstance(content, str) else content
    return hashlib.sha256(data).hexdigest()[:length]
