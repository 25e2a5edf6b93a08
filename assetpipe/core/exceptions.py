"""统一异常体系

所有业务异常继承 AssetPipeError。CLI 层据此输出诊断信息并以非零状态退出。
缓存 I/O 错误不在此列：缓存层内部记录日志后降级为未命中。
"""

from __future__ import annotations


class AssetPipeError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(AssetPipeError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class TransformError(AssetPipeError):
    """资源转换失败（图片编码、样式处理、脚本打包）

    对所在流水线是致命错误，由编排器终止整个构建。
    """

    code = "TRANSFORM_ERROR"

    def __init__(self, message: str, *, pipeline: str = "", source: str = "") -> None:
        self.pipeline = pipeline
        self.source = source
        prefix = f"[{pipeline}] " if pipeline else ""
        where = f"{source}: " if source else ""
        super().__init__(f"{prefix}{where}{message}")


class MarkupValidationError(AssetPipeError):
    """生成的页面标记未通过校验"""

    code = "MARKUP_INVALID"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class BuildError(AssetPipeError):
    """构建被编排器终止"""

    code = "BUILD_FAILED"

    def __init__(self, message: str, *, pipeline: str = "") -> None:
        super().__init__(message)
        self.pipeline = pipeline


class BuildAborted(AssetPipeError):
    """其他流水线失败后，尚未开始的任务被放弃"""

    code = "BUILD_ABORTED"
