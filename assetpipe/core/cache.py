"""两级构建缓存

职责:
- 内存层：有界 LRU + TTL，进程内短期加速
- 磁盘层：每个键一个 JSON 文件，长期有效的事实来源
- 命中前由调用方提供的校验器复查新鲜度

缓存策略:
  - 读取先查内存，再查磁盘；磁盘命中且校验通过后提升到内存
  - 任一层命中都要经过校验器，校验失败时两层同时删除并报告未命中
  - 写入内存无条件成功，写入磁盘尽力而为，失败只记录日志
  - 内存层按条目数上限和 TTL 淘汰；磁盘层不自动淘汰，只能 clear

并发:
  锁只保护内存字典本身，磁盘 I/O 在锁外进行，不同键之间互不阻塞。
  同一键的并发写入都是原子 rename，内容一致，谁后落盘都正确。
"""

from __future__ import annotations

import json
import logging
import shutil
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Callable

from assetpipe.core.models import CacheEntry, CacheStats
from assetpipe.utils.files import atomic_write, read_json

logger = logging.getLogger(__name__)

Validator = Callable[[CacheEntry], bool]

DEFAULT_MAX_ITEMS = 500
DEFAULT_TTL = 60 * 60  # 1 小时


class MemoryTier:
    """有界、按时间过期的 LRU 内存索引

    访问会刷新条目年龄，因此字典顺序同时是最近使用顺序和年龄顺序，
    队首永远是最旧的条目。
    """

    def __init__(
        self,
        max_items: int = DEFAULT_MAX_ITEMS,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_items = max(1, max_items)
        self.ttl = ttl
        self._clock = clock
        self._items: OrderedDict[str, tuple[float, CacheEntry]] = OrderedDict()
        self._lock = threading.Lock()

    def _expired(self, stamp: float, now: float) -> bool:
        return self.ttl > 0 and now - stamp > self.ttl

    def _purge_expired(self, now: float) -> None:
        while self._items:
            stamp = next(iter(self._items.values()))[0]
            if not self._expired(stamp, now):
                break
            self._items.popitem(last=False)

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            now = self._clock()
            if self._expired(item[0], now):
                del self._items[key]
                return None
            self._items[key] = (now, item[1])
            self._items.move_to_end(key)
            return item[1]

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            now = self._clock()
            self._items[key] = (now, entry)
            self._items.move_to_end(key)
            self._purge_expired(now)
            while len(self._items) > self.max_items:
                evicted, _ = self._items.popitem(last=False)
                logger.debug("内存缓存淘汰: %s", evicted)

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def keys(self) -> list[str]:
        with self._lock:
            self._purge_expired(self._clock())
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None


class CacheStore:
    """内存 + 磁盘两级缓存，构造时从磁盘恢复内存层

    显式构造并按引用传给各流水线，不使用模块级单例。
    """

    def __init__(
        self,
        cache_dir: str | Path = ".build-cache",
        *,
        max_items: int = DEFAULT_MAX_ITEMS,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._memory = MemoryTier(max_items=max_items, ttl=ttl, clock=clock)
        self._counter_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self.load_cache()

    @property
    def memory(self) -> MemoryTier:
        return self._memory

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def _count(self, hit: bool) -> None:
        with self._counter_lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    # ---- 磁盘层 ----

    def _read_disk(self, key: str, path: Path | None = None) -> CacheEntry | None:
        """读取并反序列化磁盘条目；文件缺失或损坏时返回 None"""
        path = path or self._path(key)
        if not path.is_file():
            return None
        try:
            entry = CacheEntry.from_dict(read_json(path))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("缓存读取失败 %s: %s", key, e)
            return None
        if entry.key != key:
            logger.warning("缓存文件与键不一致，忽略: %s (记录为 %s)", path.name, entry.key)
            return None
        return entry

    # ---- 公共接口 ----

    def get(self, key: str, validator: Validator | None = None) -> CacheEntry | None:
        """查询缓存，未命中或校验失败返回 None"""
        entry = self._memory.get(key)
        from_disk = False
        if entry is None:
            entry = self._read_disk(key)
            from_disk = True
        if entry is None:
            self._count(hit=False)
            return None

        if validator is not None and not validator(entry):
            logger.info("缓存已失效，删除: %s (%s)", key, entry.kind.value)
            self.delete(key)
            self._count(hit=False)
            return None

        if from_disk:
            self._memory.set(key, entry)
        self._count(hit=True)
        return entry

    def set(self, key: str, entry: CacheEntry) -> None:
        """写入缓存；磁盘写入失败时内存副本在本进程内继续有效"""
        self._memory.set(key, entry)
        try:
            atomic_write(self._path(key), json.dumps(entry.to_dict(), ensure_ascii=False))
        except (OSError, TypeError, ValueError) as e:
            logger.warning("缓存写入失败 %s: %s", key, e)

    def delete(self, key: str) -> None:
        """从两级缓存删除一个条目"""
        self._memory.delete(key)
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("缓存删除失败 %s: %s", key, e)

    def clear(self) -> None:
        """清空两级缓存"""
        self._memory.clear()
        if not self.cache_dir.exists():
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            return
        for item in self.cache_dir.iterdir():
            try:
                if item.is_dir():
                    shutil.rmtree(item)
                else:
                    item.unlink()
            except OSError as e:
                logger.warning("缓存清理失败 %s: %s", item, e)
        logger.info("缓存已清空: %s", self.cache_dir)

    def load_cache(self) -> int:
        """扫描磁盘目录重建内存层，损坏的单个文件跳过；返回加载条目数"""
        loaded = 0
        for path in sorted(self.cache_dir.glob("*.json")):
            entry = self._read_disk(path.stem, path)
            if entry is None:
                continue
            self._memory.set(path.stem, entry)
            loaded += 1
        if loaded:
            logger.info("已从磁盘加载 %d 条缓存: %s", loaded, self.cache_dir)
        return loaded

    def stats(self) -> CacheStats:
        """磁盘条目数/字节数、内存条目数及命中统计"""
        disk_items = 0
        total_bytes = 0
        for path in self.cache_dir.glob("*.json"):
            try:
                total_bytes += path.stat().st_size
            except OSError:
                # 并发删除的文件不计入
                continue
            disk_items += 1
        with self._counter_lock:
            hits, misses = self._hits, self._misses
        return CacheStats(
            memory_items=len(self._memory),
            disk_items=disk_items,
            total_bytes=total_bytes,
            hits=hits,
            misses=misses,
        )
