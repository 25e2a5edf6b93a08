"""通用工具：文件读写、子进程执行、日志配置"""
