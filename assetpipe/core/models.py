"""核心数据模型

缓存条目、各流水线产物记录以及构建报告集中定义于此。
缓存条目的 payload 对缓存层不透明，其结构由各资源类型的 to_payload / from_payload 约定。
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AssetKind(str, Enum):
    """资源类型标签，决定缓存键的类型分量和校验器的选择"""

    IMAGE = "image"
    STYLE = "style"
    SCRIPT = "script"


# =========================================================================
# 缓存条目
# =========================================================================


@dataclass(frozen=True)
class CacheEntry:
    """缓存条目（写入后不可变，输入变化时生成新键而非修改旧条目）"""

    key: str
    kind: AssetKind
    payload: dict[str, Any]
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind.value,
            "payload": self.payload,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        """从磁盘反序列化，字段缺失或类型未知时抛 KeyError / ValueError"""
        payload = data["payload"]
        if not isinstance(payload, dict):
            raise ValueError(f"payload 不是字典: {type(payload).__name__}")
        return cls(
            key=str(data["key"]),
            kind=AssetKind(data["kind"]),
            payload=payload,
            created_at=float(data.get("created_at", 0.0)),
        )


@dataclass
class CacheStats:
    """缓存统计快照"""

    memory_items: int = 0
    disk_items: int = 0
    total_bytes: int = 0
    hits: int = 0
    misses: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "memoryItemCount": self.memory_items,
            "diskItemCount": self.disk_items,
            "totalBytes": self.total_bytes,
            "sizeMB": f"{self.total_bytes / (1024 * 1024):.2f}",
            "hits": self.hits,
            "misses": self.misses,
        }


# =========================================================================
# 图片
# =========================================================================


@dataclass(frozen=True)
class ImageVersion:
    """单个输出版本（格式 × 宽度）"""

    format: str
    width: int
    height: int
    file: str  # 相对构建输出根目录，POSIX 分隔符

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format,
            "width": self.width,
            "height": self.height,
            "file": self.file,
        }


@dataclass
class ImageManifestEntry:
    """一张源图片对应的全部输出版本"""

    original: str       # 相对图片源目录的路径，清单的键
    source: str         # 源文件绝对路径，校验器据此复查 mtime
    timestamp: int      # 生成时源文件的 mtime (ns)
    output_root: str
    versions: list[ImageVersion] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "original": self.original,
            "source": self.source,
            "timestamp": self.timestamp,
            "output_root": self.output_root,
            "versions": [v.to_dict() for v in self.versions],
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ImageManifestEntry:
        return cls(
            original=payload["original"],
            source=payload["source"],
            timestamp=payload["timestamp"],
            output_root=payload.get("output_root", ""),
            versions=[ImageVersion(**v) for v in payload.get("versions", [])],
        )


# =========================================================================
# 样式 / 脚本
# =========================================================================


@dataclass
class StyleOutput:
    """样式流水线产物：内容寻址的输出文件名 + 输入时间戳"""

    inputs: dict[str, int]
    output: str
    output_path: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {
            "inputs": self.inputs,
            "output": self.output,
            "output_path": self.output_path,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> StyleOutput:
        return cls(
            inputs=dict(payload["inputs"]),
            output=payload["output"],
            output_path=payload.get("output_path", ""),
        )


@dataclass
class ScriptBundleOutput:
    """脚本打包产物"""

    entries: list[str]
    outputs: list[str]                       # 相对构建输出根目录
    inputs: dict[str, int] = field(default_factory=dict)
    dependency_manifest: str = ""
    package_time: int | None = None          # 依赖描述文件 mtime，文件不存在时为 None
    analysis_file: str = ""
    output_root: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {
            "entries": self.entries,
            "outputs": self.outputs,
            "inputs": self.inputs,
            "dependency_manifest": self.dependency_manifest,
            "package_time": self.package_time,
            "analysis_file": self.analysis_file,
            "output_root": self.output_root,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ScriptBundleOutput:
        return cls(
            entries=list(payload.get("entries", [])),
            outputs=list(payload["outputs"]),
            inputs=dict(payload.get("inputs", {})),
            dependency_manifest=payload.get("dependency_manifest", ""),
            package_time=payload.get("package_time"),
            analysis_file=payload.get("analysis_file", ""),
            output_root=payload.get("output_root", ""),
        )


# =========================================================================
# 构建报告
# =========================================================================


@dataclass
class BuildReport:
    """一次构建的汇总报告，每次构建整体重新生成"""

    duration_seconds: float
    js: list[str] = field(default_factory=list)
    css: list[str] = field(default_factory=list)
    images: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    output_directory: str = ""
    cache_stats: CacheStats = field(default_factory=CacheStats)
    status: str = "complete"

    def to_dict(self) -> dict[str, Any]:
        return {
            "timeInSeconds": round(self.duration_seconds, 2),
            "status": self.status,
            "assets": {
                "js": self.js,
                "css": self.css,
                "images": self.images,
            },
            "outputDirectory": self.output_directory,
            "cacheStats": self.cache_stats.to_dict(),
        }
