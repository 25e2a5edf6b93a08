"""核心层：数据模型、指纹、两级缓存、校验器、并发限流、配置"""
