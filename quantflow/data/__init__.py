"""
数据层

- connectors: 交易所适配器
- store: K 线存储
- collector: 采集编排
- quality: 数据质量与回填
"""
