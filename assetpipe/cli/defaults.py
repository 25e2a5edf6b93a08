"""CLI 默认值"""

DEFAULT_CONFIG = "assetpipe.yml"
