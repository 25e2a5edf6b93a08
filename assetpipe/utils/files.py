"""文件读写工具

构建产物、缓存条目、清单都经 atomic_write 落盘：
读者（下一次构建、并发的同键写入者）只会看到旧内容或完整新内容。
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 配置文件大小上限 (10MB)
MAX_YAML_SIZE = 10 * 1024 * 1024


def atomic_write(path: Path, content: str | bytes) -> None:
    """写同目录临时文件 (.<name>.*.tmp) 后 os.replace 到目标路径

    异常:
        OSError: 写入或重命名失败，临时文件已清理
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    mode, encoding = ("wb", None) if isinstance(content, bytes) else ("w", "utf-8")
    try:
        with os.fdopen(fd, mode, encoding=encoding) as f:
            f.write(content)
        os.replace(tmp, str(path))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def write_json(path: str | Path, data: Any, *, indent: int | None = 2) -> Path:
    """原子写入 JSON（UTF-8，不转义中文），返回写入路径"""
    p = Path(path)
    atomic_write(p, json.dumps(data, indent=indent, ensure_ascii=False))
    return p


def read_json(path: str | Path) -> Any:
    """读取 JSON；内容损坏时抛 json.JSONDecodeError (ValueError 子类)"""
    return json.loads(Path(path).read_text(encoding="utf-8"))


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 配置

    文件不存在或为空返回 {}；顶层不是映射时记录警告并返回 {}。

    异常:
        ValueError: 文件超过 MAX_YAML_SIZE
        yaml.YAMLError: 语法错误
    """
    p = Path(path)
    if not p.is_file():
        return {}
    size = p.stat().st_size
    if size > MAX_YAML_SIZE:
        raise ValueError(f"YAML 文件过大: {p} ({size} 字节，上限 {MAX_YAML_SIZE})")

    data = yaml.safe_load(p.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("%s 顶层不是映射 (%s)，忽略", p, type(data).__name__)
        return {}
    return data
