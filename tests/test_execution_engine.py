"""探针执行引擎测试模块"""

import asyncio

import aiomysql
import pytest

from mysql_diagnostics.models.diagnostics import ColumnSpec, ColumnType, Probe, ProbeCategory
from mysql_diagnostics.services.execution_engine import ExecutionEngine


class FakeCursor:
    """模拟 aiomysql 游标"""

    def __init__(self, columns, rows, delay=0, error=None):
        self._columns = columns
        self._rows = rows
        self.delay = delay
        self.error = error
        self.description = None
        self.executed = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def execute(self, query, args=None):
        self.executed.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        self.description = [(name, None, None, None, None, None, None)
                            for name in self._columns]

    async def fetchall(self):
        return self._rows


class FakeConnection:
    """模拟 aiomysql 连接"""

    def __init__(self, cursor):
        self._cursor = cursor

    def cursor(self):
        return self._cursor


def make_probe(probe_id='health_check', timeout=None):
    return Probe(
        probe_id=probe_id,
        category=ProbeCategory.HEALTH_CHECK,
        query="SELECT 1 AS alive, VERSION() AS version",
        columns=(ColumnSpec('alive', ColumnType.INTEGER),
                 ColumnSpec('version', ColumnType.STRING)),
        timeout=timeout,
    )


class TestExecutionEngine:
    """执行引擎测试类"""

    @pytest.mark.asyncio
    async def test_run_success(self):
        """测试成功执行并把行转换为字典"""
        cursor = FakeCursor(['alive', 'version'], [(1, '8.0.36')])
        engine = ExecutionEngine()
        probe = make_probe()

        result = await engine.run(probe, FakeConnection(cursor))

        assert result.success
        assert result.probe_id == 'health_check'
        assert result.rows == ({'alive': 1, 'version': '8.0.36'},)
        assert result.error is None
        assert result.duration >= 0
        assert cursor.executed == [probe.query]

    @pytest.mark.asyncio
    async def test_run_empty_result(self):
        """测试空结果集仍是成功"""
        engine = ExecutionEngine()

        result = await engine.run(make_probe(), FakeConnection(FakeCursor(['alive', 'version'], [])))

        assert result.success
        assert result.rows == ()

    @pytest.mark.asyncio
    async def test_run_timeout(self):
        """测试超时产生 TimeoutError 失败结果"""
        cursor = FakeCursor(['alive', 'version'], [(1, 'x')], delay=1.0)
        engine = ExecutionEngine()

        result = await engine.run(make_probe(), FakeConnection(cursor), timeout=0.05)

        assert not result.success
        assert result.error_type == 'TimeoutError'
        assert result.rows == ()
        assert result.error.details['timeout'] == 0.05
        assert result.duration < 1.0

    @pytest.mark.asyncio
    async def test_run_server_error(self):
        """测试服务器拒绝查询时保留错误码"""
        error = aiomysql.ProgrammingError(1146, "Table 'sys.x$foo' doesn't exist")
        cursor = FakeCursor([], [], error=error)
        engine = ExecutionEngine()

        result = await engine.run(make_probe(), FakeConnection(cursor))

        assert not result.success
        assert result.error_type == 'ExecutionError'
        assert result.error_message == "(1146) Table 'sys.x$foo' doesn't exist"
        assert result.error.details['server_code'] == 1146
        assert result.error.cause is error

    @pytest.mark.asyncio
    async def test_run_unexpected_error(self):
        """测试其他异常也转换为失败结果"""
        cursor = FakeCursor([], [], error=RuntimeError("connection reset"))
        engine = ExecutionEngine()

        result = await engine.run(make_probe(), FakeConnection(cursor))

        assert not result.success
        assert result.error_type == 'ExecutionError'
        assert "connection reset" in result.error_message

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        """测试取消不会被吞掉"""
        cursor = FakeCursor(['alive', 'version'], [(1, 'x')], delay=5.0)
        engine = ExecutionEngine()

        task = asyncio.create_task(engine.run(make_probe(), FakeConnection(cursor), timeout=10))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestResolveTimeout:
    """超时解析测试类"""

    def test_priority(self):
        """测试超时优先级：参数 > 配置覆盖 > 探针声明 > 默认值"""
        engine = ExecutionEngine(default_timeout=10, probe_timeouts={'health_check': 3})

        assert engine.resolve_timeout(make_probe(timeout=5), 1) == 1
        assert engine.resolve_timeout(make_probe(timeout=5)) == 3
        assert engine.resolve_timeout(make_probe('other', timeout=5)) == 5
        assert engine.resolve_timeout(make_probe('other')) == 10
