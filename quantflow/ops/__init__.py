"""
运维模块

- logging: structlog 日志配置
- scheduler: 采集调度
"""
