"""数据模型测试模块"""

import json
import pickle
from datetime import datetime

import pytest

from mysql_diagnostics.models.diagnostics import (
    NULL, ColumnSpec, ColumnType, ExecutionResult, Finding, Metric, Probe,
    ProbeCategory, ProbeFailure, Report, Severity, to_json_value
)
from mysql_diagnostics.utils.exceptions import ProbeTimeoutError, SchemaMismatchError


class TestProbeCategory:
    """探针分类测试类"""

    def test_all_categories(self):
        """测试十个分类齐全"""
        values = {c.value for c in ProbeCategory}
        assert values == {
            'DataQuality', 'ProcessMonitoring', 'PerformanceSchema', 'SlowQuery',
            'SizeIndex', 'AppointmentLookup', 'GlobalStatus', 'HealthCheck',
            'DeadlockAudit', 'BufferPool',
        }

    def test_from_name(self):
        """测试按值或成员名查找"""
        assert ProbeCategory.from_name('BufferPool') == ProbeCategory.BUFFER_POOL
        assert ProbeCategory.from_name('buffer_pool') == ProbeCategory.BUFFER_POOL
        assert ProbeCategory.from_name('DEADLOCK_AUDIT') == ProbeCategory.DEADLOCK_AUDIT

    def test_from_name_unknown(self):
        """测试未知分类"""
        with pytest.raises(ValueError, match="未知的探针分类"):
            ProbeCategory.from_name('Replication')


class TestColumnType:
    """列类型测试类"""

    def test_duration_types(self):
        """测试时长类型统一以秒为单位"""
        for column_type in (ColumnType.DURATION_S, ColumnType.DURATION_MS,
                            ColumnType.DURATION_NS, ColumnType.DURATION_PS):
            assert column_type.is_duration
            assert column_type.default_unit == 'seconds'

    def test_default_units(self):
        """测试默认单位"""
        assert ColumnType.PERCENT.default_unit == 'percent'
        assert ColumnType.BYTES.default_unit == 'bytes'
        assert ColumnType.INTEGER.default_unit == ''
        assert not ColumnType.STRING.is_duration

    def test_column_spec_unit_override(self):
        """测试列声明的单位覆盖默认单位"""
        assert ColumnSpec('x', ColumnType.INTEGER, unit='pages').resolved_unit == 'pages'
        assert ColumnSpec('x', ColumnType.PERCENT).resolved_unit == 'percent'


class TestSeverity:
    """严重级别测试类"""

    def test_rank_order(self):
        """测试级别顺序"""
        assert Severity.INFO.rank < Severity.WARNING.rank < Severity.CRITICAL.rank


class TestNullMarker:
    """空值标记测试类"""

    def test_null_is_distinct(self):
        """测试 NULL 区别于 0 和空字符串"""
        assert NULL is not None
        assert NULL != 0
        assert NULL != ''
        assert not NULL
        assert repr(NULL) == 'NULL'

    def test_null_singleton_survives_pickle(self):
        """测试序列化后仍是同一个标记"""
        assert pickle.loads(pickle.dumps(NULL)) is NULL

    def test_to_json_value(self):
        """测试 NULL 输出为 JSON null"""
        assert to_json_value(NULL) is None
        assert to_json_value(0) == 0
        assert to_json_value('') == ''


class TestProbe:
    """探针模型测试类"""

    def setup_method(self):
        """测试前准备"""
        self.probe = Probe(
            probe_id='tables',
            category=ProbeCategory.SIZE_INDEX,
            query="SELECT 1",
            columns=(
                ColumnSpec('table_name', ColumnType.STRING),
                ColumnSpec('data_bytes', ColumnType.BYTES),
            ),
            label_columns=('table_name',),
        )

    def test_column_names(self):
        """测试列名顺序"""
        assert self.probe.column_names == ('table_name', 'data_bytes')

    def test_value_columns_exclude_labels(self):
        """测试标签列不作为指标列"""
        assert [c.name for c in self.probe.value_columns] == ['data_bytes']

    def test_metric_name(self):
        """测试指标命名"""
        assert self.probe.metric_name('data_bytes') == 'tables.data_bytes'

    def test_probe_is_immutable(self):
        """测试探针不可修改"""
        with pytest.raises(AttributeError):
            self.probe.query = "DELETE FROM t"


class TestExecutionResult:
    """执行结果测试类"""

    def test_success(self):
        """测试成功结果"""
        result = ExecutionResult(probe_id='p', success=True, duration=0.1,
                                 rows=({'a': 1},))
        assert result.error_type is None
        assert result.error_message is None
        assert isinstance(result.timestamp, datetime)

    def test_failed(self):
        """测试失败结果携带错误标签"""
        error = ProbeTimeoutError("探针 p 执行超时 (1s)", probe_id='p', timeout=1)
        result = ExecutionResult.failed('p', error, duration=1.0)
        assert not result.success
        assert result.rows == ()
        assert result.error_type == 'TimeoutError'
        assert result.error_message == "探针 p 执行超时 (1s)"


class TestMetric:
    """指标测试类"""

    def test_is_numeric(self):
        """测试数值判断"""
        assert Metric('m', 1, ('p',)).is_numeric
        assert Metric('m', 1.5, ('p',)).is_numeric
        assert not Metric('m', 'ON', ('p',)).is_numeric
        assert not Metric('m', True, ('p',)).is_numeric
        assert not Metric('m', NULL, ('p',)).is_numeric
        assert Metric('m', NULL, ('p',)).is_null

    def test_label_key(self):
        """测试标签键按标签名排序"""
        metric = Metric('tables.data_bytes', 10, ('tables',),
                        labels={'table_name': 'orders', 'table_schema': 'shop'})
        assert metric.label_key == 'tables.data_bytes{table_name=orders,table_schema=shop}'
        assert Metric('m', 1, ('p',)).label_key == 'm'

    def test_to_dict(self):
        """测试字典输出"""
        metric = Metric('p.value', NULL, ('p',), unit='seconds', labels={'db': NULL})
        assert metric.to_dict() == {
            'name': 'p.value',
            'value': None,
            'unit': 'seconds',
            'sources': ['p'],
            'labels': {'db': None},
        }

    def test_labels_are_immutable_and_hashable(self):
        """测试标签不可修改，带标签的指标可哈希"""
        source = {'table_schema': 'shop'}
        metric = Metric('tables.rows', 5, ('tables',), labels=source)

        with pytest.raises(TypeError):
            metric.labels['table_schema'] = 'other'

        source['table_schema'] = 'other'
        assert metric.labels['table_schema'] == 'shop'
        assert metric.labels == {'table_schema': 'shop'}
        assert hash(metric) == hash(Metric('tables.rows', 5, ('tables',),
                                           labels={'table_schema': 'shop'}))
        assert len({metric, Metric('tables.rows', 5, ('tables',),
                                   labels={'table_schema': 'shop'})}) == 1

    def test_finding_labels_are_immutable(self):
        """测试发现项标签不可修改"""
        finding = Finding('tables.rows', Severity.WARNING, 5, 1, 'too many',
                          labels={'table_schema': 'shop'})

        with pytest.raises(TypeError):
            finding.labels['table_schema'] = 'other'
        assert finding in {finding}


class TestReport:
    """报告测试类"""

    def test_incomplete_flag(self):
        """测试未完成标记"""
        assert not Report(target='t', status=Severity.INFO).incomplete
        assert Report(target='t', status=Severity.INFO, incomplete_probes=('p',)).incomplete

    def test_to_dict_is_json_serializable(self):
        """测试报告可以序列化为JSON"""
        finding = Finding(metric_name='deadlocks.deadlock_count', severity=Severity.WARNING,
                          observed=42, threshold=0, message='msg', rule='warn_above')
        failure = ProbeFailure(probe_id='slow', error_type='TimeoutError',
                               message='超时', duration=1.0000004)
        error = SchemaMismatchError("bad row", probe_id='tables', row_index=3)
        report = Report(
            target='root@localhost:3306/',
            status=Severity.WARNING,
            findings=(finding,),
            metrics=(Metric('deadlocks.deadlock_count', 42, ('deadlocks',)),),
            failures=(failure,),
            schema_errors=(error,),
            incomplete_probes=('other',),
            generated_at=datetime(2024, 1, 1, 12, 0, 0),
        )

        data = json.loads(json.dumps(report.to_dict()))

        assert data['status'] == 'Warning'
        assert data['incomplete'] is True
        assert data['generated_at'] == '2024-01-01T12:00:00'
        assert data['findings'][0]['observed'] == 42
        assert data['findings'][0]['threshold'] == 0
        assert data['failures'][0] == {
            'probe_id': 'slow', 'error_type': 'TimeoutError',
            'message': '超时', 'duration': 1.0,
        }
        assert data['schema_errors'] == [
            {'probe_id': 'tables', 'row_index': 3, 'message': 'bad row'}
        ]

    def test_probe_failure_from_result(self):
        """测试从失败结果生成失败原因"""
        error = ProbeTimeoutError("超时", probe_id='p')
        failure = ProbeFailure.from_result(ExecutionResult.failed('p', error, 2.0))
        assert failure.error_type == 'TimeoutError'
        assert failure.message == '超时'
        assert failure.duration == 2.0
