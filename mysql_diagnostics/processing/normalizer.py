"""结果规范化器

把探针返回的原始行按声明的列结构转换为带类型的指标。
"""

import math
from decimal import Decimal
from typing import Any, Dict, List

from ..models.diagnostics import (
    NULL, ColumnSpec, ColumnType, ExecutionResult, Metric, MetricValue,
    NormalizationResult, Probe
)
from ..utils.exceptions import SchemaMismatchError
from ..utils.log_manager import get_logger

# 各时长类型换算到秒的系数
DURATION_FACTORS = {
    ColumnType.DURATION_S: 1.0,
    ColumnType.DURATION_MS: 1e-3,
    ColumnType.DURATION_NS: 1e-9,
    ColumnType.DURATION_PS: 1e-12,
}


class CoercionError(ValueError):
    """单个值无法转换为声明的类型"""


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (bytes, bytearray)):
        try:
            value = value.decode('utf-8')
        except UnicodeDecodeError:
            raise CoercionError(f"无法解码为文本: {value!r}")
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise CoercionError(f"无法解析为数值: {value!r}")
        if math.isnan(number):
            raise CoercionError(f"无法解析为数值: {value!r}")
        return number
    raise CoercionError(f"不支持的数值类型: {type(value).__name__}")


def coerce_value(value: Any, column: ColumnSpec) -> MetricValue:
    """
    按列的语义类型转换一个原始值

    Args:
        value: 数据库驱动返回的原始值
        column: 列声明

    Returns:
        转换后的值，NULL 列返回 NULL 标记

    Raises:
        CoercionError: 值与声明类型不符
    """
    if value is None or value is NULL:
        return NULL

    column_type = column.type

    if column_type == ColumnType.STRING:
        if isinstance(value, (bytes, bytearray)):
            return value.decode('utf-8', errors='replace')
        return str(value)

    number = _to_number(value)

    if column_type in (ColumnType.INTEGER, ColumnType.BYTES):
        if isinstance(number, float) and number.is_integer():
            return int(number)
        return number

    if column_type in (ColumnType.FLOAT, ColumnType.PERCENT):
        return float(number)

    if column_type in DURATION_FACTORS:
        return float(number) * DURATION_FACTORS[column_type]

    raise CoercionError(f"未知的列类型: {column_type}")


class ResultNormalizer:
    """结果规范化器，本身无状态，对同一输入总是产生相同的指标"""

    def __init__(self):
        self.logger = get_logger('normalizer')

    def normalize(self, result: ExecutionResult, probe: Probe) -> NormalizationResult:
        """
        把一次执行结果转换为指标

        Args:
            result: 探针执行结果
            probe: 对应的探针定义

        Returns:
            NormalizationResult: 指标列表和被拒绝行的 SchemaMismatchError 列表
        """
        output = NormalizationResult(probe_id=probe.probe_id)

        if result.probe_id != probe.probe_id:
            raise ValueError(
                f"执行结果 {result.probe_id} 与探针 {probe.probe_id} 不匹配")

        if not result.success:
            self.logger.debug(f"探针 {probe.probe_id} 执行失败，不产生指标")
            return output

        valid_rows: List[Dict[str, Any]] = []
        for row_index, row in enumerate(result.rows):
            try:
                valid_rows.append(self._coerce_row(row, probe, row_index))
            except SchemaMismatchError as e:
                self.logger.warning(e.message)
                output.schema_errors.append(e)

        for row in valid_rows:
            labels = {name: row[name] for name in probe.label_columns}
            for column in probe.value_columns:
                output.metrics.append(Metric(
                    name=probe.metric_name(column.name),
                    value=row[column.name],
                    unit=column.resolved_unit,
                    sources=(probe.probe_id,),
                    labels=labels,
                ))

        if probe.count_metric:
            output.metrics.append(Metric(
                name=probe.metric_name(probe.count_metric),
                value=len(valid_rows),
                unit='count',
                sources=(probe.probe_id,),
            ))

        for derived in probe.derived:
            try:
                value = derived.compute(valid_rows)
            except (ArithmeticError, LookupError, TypeError, ValueError) as e:
                self.logger.warning(f"探针 {probe.probe_id} 的派生指标 {derived.name} 计算失败: {e}")
                continue
            if value is None:
                self.logger.debug(f"探针 {probe.probe_id} 的派生指标 {derived.name} 无可用数据")
                continue
            output.metrics.append(Metric(
                name=probe.metric_name(derived.name),
                value=value,
                unit=derived.unit,
                sources=(probe.probe_id,),
            ))

        self.logger.debug(
            f"探针 {probe.probe_id} 规范化完成: {len(valid_rows)} 行有效, "
            f"{output.rejected_rows} 行被拒绝, {len(output.metrics)} 个指标")
        return output

    @staticmethod
    def _coerce_row(row: Dict[str, Any], probe: Probe, row_index: int) -> Dict[str, Any]:
        """按列声明转换一行，结构或类型不符时抛出 SchemaMismatchError"""
        expected = probe.column_names
        actual = tuple(row.keys())

        if len(actual) != len(expected) or set(actual) != set(expected):
            missing = [name for name in expected if name not in row]
            extra = [name for name in actual if name not in expected]
            raise SchemaMismatchError(
                f"探针 {probe.probe_id} 第 {row_index} 行列结构不符: "
                f"期望 {len(expected)} 列, 实际 {len(actual)} 列, "
                f"缺少 {missing}, 多出 {extra}",
                probe_id=probe.probe_id,
                row_index=row_index,
            )

        coerced = {}
        for column in probe.columns:
            try:
                coerced[column.name] = coerce_value(row[column.name], column)
            except CoercionError as e:
                raise SchemaMismatchError(
                    f"探针 {probe.probe_id} 第 {row_index} 行列 {column.name} "
                    f"类型不符 ({column.type.value}): {e}",
                    probe_id=probe.probe_id,
                    row_index=row_index,
                    cause=e,
                )
        return coerced
