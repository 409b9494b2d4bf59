"""
Services - 进程级入口点

- collector: 行情数据采集服务
"""
