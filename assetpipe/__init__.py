"""assetpipe - 增量静态资源构建流水线"""

__version__ = "0.3.0"
