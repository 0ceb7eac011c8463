"""数据模型模块"""

from .diagnostics import (
    NULL, ColumnSpec, ColumnType, DerivedMetric, ExecutionResult, Finding, Metric,
    NormalizationResult, Probe, ProbeCategory, ProbeFailure, Report, Severity
)

__all__ = ['NULL', 'ColumnSpec', 'ColumnType', 'DerivedMetric', 'ExecutionResult',
           'Finding', 'Metric', 'NormalizationResult', 'Probe', 'ProbeCategory',
           'ProbeFailure', 'Report', 'Severity']
