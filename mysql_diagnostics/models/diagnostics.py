"""诊断采集相关的数据模型"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ..utils.exceptions import DiagnosticsError, SchemaMismatchError


class ProbeCategory(Enum):
    """探针分类"""
    DATA_QUALITY = "DataQuality"
    PROCESS_MONITORING = "ProcessMonitoring"
    PERFORMANCE_SCHEMA = "PerformanceSchema"
    SLOW_QUERY = "SlowQuery"
    SIZE_INDEX = "SizeIndex"
    APPOINTMENT_LOOKUP = "AppointmentLookup"
    GLOBAL_STATUS = "GlobalStatus"
    HEALTH_CHECK = "HealthCheck"
    DEADLOCK_AUDIT = "DeadlockAudit"
    BUFFER_POOL = "BufferPool"

    @classmethod
    def from_name(cls, name: str) -> 'ProbeCategory':
        """按值（DataQuality）或成员名（DATA_QUALITY）查找分类"""
        for category in cls:
            if name == category.value or name.upper() == category.name:
                return category
        raise ValueError(f"未知的探针分类: {name}")


class ColumnType(Enum):
    """列的语义类型"""
    INTEGER = "integer"
    FLOAT = "float"
    PERCENT = "percent"
    STRING = "string"
    BYTES = "bytes"
    DURATION_S = "duration_s"
    DURATION_MS = "duration_ms"
    DURATION_NS = "duration_ns"
    DURATION_PS = "duration_ps"

    @property
    def is_duration(self) -> bool:
        return self.name.startswith('DURATION_')

    @property
    def default_unit(self) -> str:
        if self.is_duration:
            return 'seconds'
        return _DEFAULT_UNITS.get(self, '')


_DEFAULT_UNITS = {
    ColumnType.PERCENT: 'percent',
    ColumnType.BYTES: 'bytes',
}


class Severity(Enum):
    """发现的严重级别"""
    INFO = "Info"
    WARNING = "Warning"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.CRITICAL: 2,
}


class _NullMarker:
    """显式的空值标记，区别于 0 和空字符串"""

    _instance: Optional['_NullMarker'] = None

    def __new__(cls) -> '_NullMarker':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return 'NULL'

    def __bool__(self) -> bool:
        return False

    def __reduce__(self):
        return (_NullMarker, ())


NULL = _NullMarker()

MetricValue = Union[int, float, str, _NullMarker]


def to_json_value(value: Any) -> Any:
    """将指标值转换为可JSON序列化的值"""
    if value is NULL:
        return None
    return value


@dataclass(frozen=True)
class ColumnSpec:
    """探针结果列声明"""
    name: str
    type: ColumnType
    unit: Optional[str] = None

    @property
    def resolved_unit(self) -> str:
        return self.unit if self.unit is not None else self.type.default_unit


@dataclass(frozen=True)
class DerivedMetric:
    """由整个结果集计算出的聚合指标

    compute 接收已规范化的行，返回 None 表示无法计算（不产生指标）。
    """
    name: str
    compute: Callable[[List[Dict[str, Any]]], Optional[MetricValue]]
    unit: str = ''


@dataclass(frozen=True)
class Probe:
    """诊断探针：一条只读查询及其期望的结果结构"""
    probe_id: str
    category: ProbeCategory
    query: str
    columns: Tuple[ColumnSpec, ...]
    timeout: Optional[float] = None
    description: str = ''
    label_columns: Tuple[str, ...] = ()
    count_metric: Optional[str] = None
    derived: Tuple[DerivedMetric, ...] = ()
    delta_metrics: Tuple[str, ...] = ()

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    @property
    def value_columns(self) -> Tuple[ColumnSpec, ...]:
        return tuple(c for c in self.columns if c.name not in self.label_columns)

    def metric_name(self, name: str) -> str:
        return f"{self.probe_id}.{name}"


@dataclass(frozen=True)
class ExecutionResult:
    """一次探针执行的结果"""
    probe_id: str
    success: bool
    duration: float
    rows: Tuple[Dict[str, Any], ...] = ()
    error: Optional[DiagnosticsError] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def error_type(self) -> Optional[str]:
        return self.error.tag if self.error else None

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None

    @classmethod
    def failed(cls, probe_id: str, error: DiagnosticsError,
               duration: float = 0.0) -> 'ExecutionResult':
        return cls(probe_id=probe_id, success=False, duration=duration, error=error)


@dataclass(frozen=True)
class Metric:
    """规范化后的数值或分类指标"""
    name: str
    value: MetricValue
    sources: Tuple[str, ...]
    unit: str = ''
    labels: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, 'labels', MappingProxyType(dict(self.labels)))

    @property
    def is_null(self) -> bool:
        return self.value is NULL

    @property
    def is_numeric(self) -> bool:
        return isinstance(self.value, (int, float)) and not isinstance(self.value, bool)

    @property
    def label_key(self) -> str:
        """指标名加标签的稳定标识，用于跨次运行比较"""
        if not self.labels:
            return self.name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(self.labels.items()))
        return f"{self.name}{{{label_str}}}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'value': to_json_value(self.value),
            'unit': self.unit,
            'sources': list(self.sources),
            'labels': {k: to_json_value(v) for k, v in self.labels.items()},
        }


@dataclass(frozen=True)
class Finding:
    """阈值评估的结果"""
    metric_name: str
    severity: Severity
    observed: MetricValue
    threshold: Union[int, float, str]
    message: str
    rule: str = ''
    labels: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, 'labels', MappingProxyType(dict(self.labels)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'metric': self.metric_name,
            'severity': self.severity.value,
            'observed': to_json_value(self.observed),
            'threshold': self.threshold,
            'rule': self.rule,
            'message': self.message,
            'labels': {k: to_json_value(v) for k, v in self.labels.items()},
        }


@dataclass(frozen=True)
class ProbeFailure:
    """报告中的单个探针失败原因"""
    probe_id: str
    error_type: str
    message: str
    duration: float = 0.0

    @classmethod
    def from_result(cls, result: ExecutionResult) -> 'ProbeFailure':
        return cls(
            probe_id=result.probe_id,
            error_type=result.error_type or 'UnknownError',
            message=result.error_message or '',
            duration=result.duration,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'probe_id': self.probe_id,
            'error_type': self.error_type,
            'message': self.message,
            'duration': round(self.duration, 6),
        }


@dataclass
class NormalizationResult:
    """规范化输出：指标和被拒绝的行"""
    probe_id: str
    metrics: List[Metric] = field(default_factory=list)
    schema_errors: List[SchemaMismatchError] = field(default_factory=list)

    @property
    def rejected_rows(self) -> int:
        return len(self.schema_errors)


@dataclass(frozen=True)
class Report:
    """一次采集运行的最终报告"""
    target: str
    status: Severity
    findings: Tuple[Finding, ...] = ()
    metrics: Tuple[Metric, ...] = ()
    failures: Tuple[ProbeFailure, ...] = ()
    schema_errors: Tuple[SchemaMismatchError, ...] = ()
    incomplete_probes: Tuple[str, ...] = ()
    generated_at: datetime = field(default_factory=datetime.now)

    @property
    def incomplete(self) -> bool:
        return bool(self.incomplete_probes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'generated_at': self.generated_at.isoformat(),
            'target': self.target,
            'status': self.status.value,
            'incomplete': self.incomplete,
            'incomplete_probes': list(self.incomplete_probes),
            'findings': [f.to_dict() for f in self.findings],
            'metrics': [m.to_dict() for m in self.metrics],
            'failures': [f.to_dict() for f in self.failures],
            'schema_errors': [
                {
                    'probe_id': e.probe_id,
                    'row_index': e.row_index,
                    'message': e.message,
                }
                for e in self.schema_errors
            ],
        }
