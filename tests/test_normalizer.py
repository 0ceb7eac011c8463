"""结果规范化器测试模块"""

from decimal import Decimal

import pytest

from mysql_diagnostics.catalog import build_default_catalog
from mysql_diagnostics.models.diagnostics import (
    NULL, ColumnSpec, ColumnType, DerivedMetric, ExecutionResult, Probe, ProbeCategory
)
from mysql_diagnostics.processing.normalizer import (
    CoercionError, ResultNormalizer, coerce_value
)
from mysql_diagnostics.utils.exceptions import ProbeExecutionError


def success(probe_id, rows):
    return ExecutionResult(probe_id=probe_id, success=True, duration=0.01, rows=tuple(rows))


class TestCoerceValue:
    """值转换测试类"""

    def test_null(self):
        """测试 NULL 保留为显式标记"""
        for column_type in ColumnType:
            assert coerce_value(None, ColumnSpec('c', column_type)) is NULL

    def test_integer(self):
        """测试整数转换"""
        column = ColumnSpec('c', ColumnType.INTEGER)

        assert coerce_value(42, column) == 42
        assert coerce_value('42', column) == 42
        assert isinstance(coerce_value('42', column), int)
        assert coerce_value(Decimal('1448'), column) == 1448
        assert isinstance(coerce_value(Decimal('1448'), column), int)
        assert coerce_value(b'7', column) == 7

    def test_integer_keeps_fraction(self):
        """测试非整数值不截断"""
        assert coerce_value('2.5', ColumnSpec('c', ColumnType.INTEGER)) == 2.5

    def test_float_and_percent(self):
        """测试浮点数和百分比"""
        assert coerce_value(Decimal('99.99'), ColumnSpec('c', ColumnType.PERCENT)) == 99.99
        assert coerce_value(3, ColumnSpec('c', ColumnType.FLOAT)) == 3.0
        assert isinstance(coerce_value(3, ColumnSpec('c', ColumnType.FLOAT)), float)

    def test_string(self):
        """测试字符串"""
        column = ColumnSpec('c', ColumnType.STRING)

        assert coerce_value('ON', column) == 'ON'
        assert coerce_value(b'OFF', column) == 'OFF'
        assert coerce_value(1, column) == '1'
        assert coerce_value('', column) == ''

    def test_durations_in_seconds(self):
        """测试时长统一换算为秒"""
        assert coerce_value(90, ColumnSpec('c', ColumnType.DURATION_S)) == 90.0
        assert coerce_value(1500, ColumnSpec('c', ColumnType.DURATION_MS)) == pytest.approx(1.5)
        assert coerce_value(2_000_000_000, ColumnSpec('c', ColumnType.DURATION_NS)) == pytest.approx(2.0)
        assert coerce_value(3 * 10 ** 12, ColumnSpec('c', ColumnType.DURATION_PS)) == pytest.approx(3.0)

    def test_invalid_number(self):
        """测试无法解析的数值"""
        with pytest.raises(CoercionError):
            coerce_value('abc', ColumnSpec('c', ColumnType.INTEGER))
        with pytest.raises(CoercionError):
            coerce_value('nan', ColumnSpec('c', ColumnType.FLOAT))
        with pytest.raises(CoercionError):
            coerce_value(object(), ColumnSpec('c', ColumnType.FLOAT))
        with pytest.raises(CoercionError):
            coerce_value(b'\xff\xfe', ColumnSpec('c', ColumnType.INTEGER))


class TestResultNormalizer:
    """结果规范化器测试类"""

    def setup_method(self):
        """测试前准备"""
        self.normalizer = ResultNormalizer()
        self.catalog = build_default_catalog()
        self.tables_probe = Probe(
            probe_id='tables',
            category=ProbeCategory.SIZE_INDEX,
            query="SELECT table_name, data_bytes FROM t",
            columns=(
                ColumnSpec('table_name', ColumnType.STRING),
                ColumnSpec('data_bytes', ColumnType.BYTES),
            ),
            label_columns=('table_name',),
            count_metric='table_count',
            derived=(DerivedMetric('total_bytes',
                                   lambda rows: sum(r['data_bytes'] for r in rows), 'bytes'),),
        )

    def test_buffer_pool_hit_rate(self):
        """测试缓冲池命中率指标"""
        probe = self.catalog.get('buffer_pool')
        result = success('buffer_pool', [{
            'read_requests': Decimal('39044624'),
            'disk_reads': Decimal('5113'),
            'pages_total': Decimal('8192'),
            'pages_free': Decimal('1024'),
        }])

        output = self.normalizer.normalize(result, probe)
        metrics = {m.name: m for m in output.metrics}

        assert metrics['buffer_pool.hit_rate_percent'].value == 99.99
        assert metrics['buffer_pool.hit_rate_percent'].unit == 'percent'
        assert metrics['buffer_pool.hit_rate_percent'].sources == ('buffer_pool',)
        assert metrics['buffer_pool.free_pages_percent'].value == 12.5
        assert metrics['buffer_pool.read_requests'].value == 39044624

    def test_metric_order_and_labels(self):
        """测试指标按行、列顺序产生并携带标签"""
        result = success('tables', [
            {'table_name': 'orders', 'data_bytes': 2048},
            {'table_name': 'users', 'data_bytes': 1024},
        ])

        output = self.normalizer.normalize(result, self.tables_probe)

        assert [m.name for m in output.metrics] == [
            'tables.data_bytes', 'tables.data_bytes',
            'tables.table_count', 'tables.total_bytes',
        ]
        assert output.metrics[0].labels == {'table_name': 'orders'}
        assert output.metrics[0].unit == 'bytes'
        assert output.metrics[2].value == 2
        assert output.metrics[2].unit == 'count'
        assert output.metrics[3].value == 3072

    def test_empty_result(self):
        """测试空结果集产生计数为零的指标"""
        output = self.normalizer.normalize(success('tables', []), self.tables_probe)

        assert [(m.name, m.value) for m in output.metrics] == [
            ('tables.table_count', 0), ('tables.total_bytes', 0)]
        assert output.rejected_rows == 0

    def test_null_values(self):
        """测试 NULL 列产生 NULL 指标"""
        result = success('tables', [{'table_name': NULL, 'data_bytes': None}])
        probe = Probe(
            probe_id='tables',
            category=ProbeCategory.SIZE_INDEX,
            query="SELECT 1",
            columns=self.tables_probe.columns,
            label_columns=('table_name',),
        )

        output = self.normalizer.normalize(result, probe)

        assert len(output.metrics) == 1
        assert output.metrics[0].value is NULL
        assert output.metrics[0].labels == {'table_name': NULL}

    def test_schema_mismatch_rejects_only_bad_rows(self):
        """测试列结构不符的行被拒绝，其余行继续处理"""
        result = success('tables', [
            {'table_name': 'orders', 'data_bytes': 2048},
            {'table_name': 'broken'},
            {'table_name': 'users', 'data_bytes': 'lots'},
            {'table_name': 'audit', 'data_bytes': 512},
        ])

        output = self.normalizer.normalize(result, self.tables_probe)

        assert output.rejected_rows == 2
        assert [e.row_index for e in output.schema_errors] == [1, 2]
        assert all(e.probe_id == 'tables' for e in output.schema_errors)
        assert [m.labels['table_name'] for m in output.metrics
                if m.name == 'tables.data_bytes'] == ['orders', 'audit']
        counts = [m.value for m in output.metrics if m.name == 'tables.table_count']
        assert counts == [2]

    def test_extra_column_rejected(self):
        """测试多出的列也视为结构不符"""
        result = success('tables', [{'table_name': 'a', 'data_bytes': 1, 'extra': 2}])

        output = self.normalizer.normalize(result, self.tables_probe)

        assert output.rejected_rows == 1
        assert 'extra' in output.schema_errors[0].message

    def test_failed_result_produces_nothing(self):
        """测试失败结果不产生指标"""
        result = ExecutionResult.failed('tables', ProbeExecutionError("(1146) missing"))

        output = self.normalizer.normalize(result, self.tables_probe)

        assert output.metrics == []
        assert output.schema_errors == []

    def test_mismatched_probe(self):
        """测试结果与探针不匹配"""
        with pytest.raises(ValueError):
            self.normalizer.normalize(success('other', []), self.tables_probe)

    def test_derived_metric_failure_is_skipped(self):
        """测试派生指标计算失败时跳过"""
        probe = Probe(
            probe_id='ratio',
            category=ProbeCategory.GLOBAL_STATUS,
            query="SELECT 1",
            columns=(ColumnSpec('a', ColumnType.INTEGER), ColumnSpec('b', ColumnType.INTEGER)),
            derived=(DerivedMetric('a_over_b', lambda rows: rows[0]['a'] / rows[0]['b']),),
        )

        output = self.normalizer.normalize(success('ratio', [{'a': 1, 'b': 0}]), probe)

        assert [m.name for m in output.metrics] == ['ratio.a', 'ratio.b']

    def test_undecodable_bytes_rejects_row(self):
        """测试无法解码的字节值只拒绝所在行"""
        probe = Probe(
            probe_id='counter',
            category=ProbeCategory.GLOBAL_STATUS,
            query="SELECT v FROM t",
            columns=(ColumnSpec('v', ColumnType.INTEGER),),
        )
        result = success('counter', [{'v': b'\xff\xfe'}, {'v': 7}])

        output = self.normalizer.normalize(result, probe)

        assert output.rejected_rows == 1
        assert output.schema_errors[0].row_index == 0
        assert [m.value for m in output.metrics] == [7]

    def test_derived_metric_lookup_failure_is_skipped(self):
        """测试派生指标缺少列或缺少行时跳过"""
        probe = Probe(
            probe_id='lookup',
            category=ProbeCategory.GLOBAL_STATUS,
            query="SELECT a FROM t",
            columns=(ColumnSpec('a', ColumnType.INTEGER),),
            derived=(
                DerivedMetric('missing_column', lambda rows: rows[0]['missing']),
                DerivedMetric('first_row', lambda rows: rows[0]['a']),
            ),
        )

        output = self.normalizer.normalize(success('lookup', [{'a': 3}]), probe)
        assert [m.name for m in output.metrics] == ['lookup.a', 'lookup.first_row']

        output = self.normalizer.normalize(success('lookup', []), probe)
        assert output.metrics == []

    def test_row_metrics_do_not_share_labels(self):
        """测试同一行产生的指标各自持有标签"""
        probe = Probe(
            probe_id='tables',
            category=ProbeCategory.SIZE_INDEX,
            query="SELECT table_name, data_bytes, index_bytes FROM t",
            columns=(
                ColumnSpec('table_name', ColumnType.STRING),
                ColumnSpec('data_bytes', ColumnType.BYTES),
                ColumnSpec('index_bytes', ColumnType.BYTES),
            ),
            label_columns=('table_name',),
        )

        output = self.normalizer.normalize(
            success('tables', [{'table_name': 'orders', 'data_bytes': 1, 'index_bytes': 2}]),
            probe)

        first, second = output.metrics
        assert first.labels is not second.labels
        with pytest.raises(TypeError):
            first.labels['table_name'] = 'users'
        assert second.labels['table_name'] == 'orders'

    def test_idempotent(self):
        """测试同一输入总是产生相同的指标"""
        result = success('tables', [{'table_name': 'orders', 'data_bytes': 2048}])

        first = self.normalizer.normalize(result, self.tables_probe)
        second = self.normalizer.normalize(result, self.tables_probe)

        assert first.metrics == second.metrics

    def test_active_processes_durations(self):
        """测试进程时长以秒为单位并产生最长时长"""
        probe = self.catalog.get('active_processes')
        result = success('active_processes', [
            {'id': 10, 'user': 'app', 'db': 'shop', 'command': 'Query',
             'time': 120, 'state': 'Sending data'},
            {'id': 11, 'user': 'app', 'db': None, 'command': 'Query',
             'time': 3, 'state': 'executing'},
        ])

        output = self.normalizer.normalize(result, probe)
        by_name = {}
        for metric in output.metrics:
            by_name.setdefault(metric.name, []).append(metric)

        assert [m.value for m in by_name['active_processes.time']] == [120.0, 3.0]
        assert by_name['active_processes.time'][0].unit == 'seconds'
        assert by_name['active_processes.time'][1].labels['db'] is NULL
        assert by_name['active_processes.active_count'][0].value == 2
        assert by_name['active_processes.longest_seconds'][0].value == 120.0
