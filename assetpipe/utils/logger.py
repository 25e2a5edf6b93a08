"""assetpipe 日志配置

三条流水线并行写日志，靠记录上的构建上下文区分来源：
    logger.info("处理图片: %s", name, extra={"pipeline": "image", "asset": name})

文本格式把上下文渲染成 "[image hero.png]" 前缀，JSON 格式输出为独立字段。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO

# 日志记录上可选携带的构建上下文字段
CONTEXT_FIELDS = ("pipeline", "asset")

TEXT_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s:%(context)s %(message)s"

# Pillow 在 DEBUG 级别会逐块打印解码细节
NOISY_LOGGERS = ("PIL",)


class BuildContextFilter(logging.Filter):
    """把 pipeline/asset 拼成 record.context，未携带时为空串"""

    def filter(self, record: logging.LogRecord) -> bool:
        parts = [str(v) for v in (getattr(record, f, None) for f in CONTEXT_FIELDS) if v]
        record.context = f" [{' '.join(parts)}]" if parts else ""
        return True


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志，每行一条，供 CI 收集

    {"timestamp": ..., "level": "INFO", "logger": "assetpipe.services.image_service",
     "message": "...", "pipeline": "image", "asset": "hero.png"}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = str(value)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    stream: IO[str] | None = None,
) -> None:
    """配置根日志器（默认输出到 stderr），重复调用会替换已有 handler"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    numeric = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(numeric)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.INFO))

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.addFilter(BuildContextFilter())
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
