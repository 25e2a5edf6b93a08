"""并发限流器 - 限制同时执行的转换任务数

slot() 以有界信号量占用一个槽位，map() 在限流下并行执行一批独立任务。
同时记录当前占用数和峰值，便于观察实际并发度。
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from contextlib import contextmanager
from typing import Callable, Iterator, Sequence, TypeVar

from assetpipe.core.exceptions import BuildAborted

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 4


class ConcurrencyLimiter:
    """固定上限的并发限流器"""

    def __init__(self, limit: int = DEFAULT_CONCURRENCY, name: str = "limiter") -> None:
        self.limit = max(1, limit)
        self.name = name
        self._slots = threading.BoundedSemaphore(self.limit)
        self._lock = threading.Lock()
        self._active = 0
        self._peak = 0

    @property
    def active(self) -> int:
        with self._lock:
            return self._active

    @property
    def peak(self) -> int:
        with self._lock:
            return self._peak

    @contextmanager
    def slot(self) -> Iterator[None]:
        """占用一个槽位，槽位用尽时阻塞等待"""
        self._slots.acquire()
        with self._lock:
            self._active += 1
            self._peak = max(self._peak, self._active)
        try:
            yield
        finally:
            with self._lock:
                self._active -= 1
            self._slots.release()

    def _guarded(self, fn: Callable[[T], R], item: T, abort: threading.Event | None) -> R:
        with self.slot():
            # 排队等槽位期间可能已被叫停
            if abort is not None and abort.is_set():
                raise BuildAborted(f"{self.name}: 构建已终止，跳过未开始的任务")
            return fn(item)

    def map(
        self,
        fn: Callable[[T], R],
        items: Sequence[T],
        abort: threading.Event | None = None,
    ) -> list[R]:
        """限流下执行 fn，结果与输入顺序一致

        任一任务失败时取消尚未开始的任务，已开始的任务不中断，随后抛出该异常。
        abort 由外部（编排器）置位后，尚未开始的任务抛 BuildAborted 而不再执行。
        """
        if not items:
            return []
        if self.limit == 1:
            return [self._guarded(fn, item, abort) for item in items]

        with ThreadPoolExecutor(
            max_workers=min(self.limit, len(items)),
            thread_name_prefix=self.name,
        ) as executor:
            futures = [executor.submit(self._guarded, fn, item, abort) for item in items]
            _, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()
            for future in futures:
                if future.cancelled():
                    continue
                exc = future.exception()
                if exc is not None:
                    logger.debug("%s: 任务失败，已取消 %d 个待执行任务", self.name, len(pending))
                    raise exc
            return [f.result() for f in futures]
