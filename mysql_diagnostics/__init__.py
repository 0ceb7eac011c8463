"""MySQL诊断采集器：运行只读诊断查询、规范化结果、按阈值评估并生成报告"""

__version__ = "1.0.0"
