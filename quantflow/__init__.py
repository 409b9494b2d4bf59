"""
QuantFlow - 行情数据采集与指标计算

按小时调度从交易所采集多周期 OHLCV，检测缺口并回填，计算技术指标。
"""

__version__ = "0.1.0"
