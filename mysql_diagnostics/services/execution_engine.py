"""探针执行引擎"""

import asyncio
import time
from typing import Any, Dict, List, Optional

import aiomysql

from ..models.diagnostics import ExecutionResult, Probe
from ..utils.exceptions import ProbeExecutionError, ProbeTimeoutError
from ..utils.log_manager import get_logger

DEFAULT_PROBE_TIMEOUT = 10.0


class ExecutionEngine:
    """在给定连接上执行探针查询并强制超时

    不重试：诊断查询失败通常意味着持续性条件（例如 performance_schema 未启用）。
    """

    def __init__(self, default_timeout: float = DEFAULT_PROBE_TIMEOUT,
                 probe_timeouts: Optional[Dict[str, float]] = None):
        """
        Args:
            default_timeout: 探针未声明超时时使用的默认值（秒）
            probe_timeouts: 按探针标识覆盖的超时时间
        """
        self.default_timeout = default_timeout
        self.probe_timeouts = dict(probe_timeouts or {})
        self.logger = get_logger('engine')

    def resolve_timeout(self, probe: Probe, timeout: Optional[float] = None) -> float:
        """超时优先级：调用参数 > 配置覆盖 > 探针声明 > 默认值"""
        if timeout is not None:
            return timeout
        if probe.probe_id in self.probe_timeouts:
            return self.probe_timeouts[probe.probe_id]
        if probe.timeout is not None:
            return probe.timeout
        return self.default_timeout

    async def run(self, probe: Probe, connection: Any,
                  timeout: Optional[float] = None) -> ExecutionResult:
        """
        执行一个探针

        Args:
            probe: 探针定义
            connection: 已认证的 aiomysql 连接
            timeout: 超时时间（秒），None 时按配置解析

        Returns:
            ExecutionResult: 成功时携带结果行；超时或服务器报错时为失败结果
        """
        timeout = self.resolve_timeout(probe, timeout)
        start_time = time.monotonic()
        self.logger.debug(f"开始执行探针 {probe.probe_id}, 超时 {timeout}s")

        try:
            rows = await asyncio.wait_for(self._fetch(connection, probe.query), timeout)
        except asyncio.TimeoutError:
            duration = time.monotonic() - start_time
            message = f"探针 {probe.probe_id} 执行超时 ({timeout}s)"
            self.logger.warning(message)
            return ExecutionResult.failed(
                probe.probe_id,
                ProbeTimeoutError(message, probe_id=probe.probe_id, timeout=timeout),
                duration,
            )
        except aiomysql.Error as e:
            duration = time.monotonic() - start_time
            server_code, server_message = self._split_server_error(e)
            message = (f"({server_code}) {server_message}" if server_code is not None
                       else server_message)
            self.logger.warning(f"探针 {probe.probe_id} 被服务器拒绝: {message}")
            return ExecutionResult.failed(
                probe.probe_id,
                ProbeExecutionError(message, probe_id=probe.probe_id,
                                    server_code=server_code, cause=e),
                duration,
            )
        except Exception as e:
            duration = time.monotonic() - start_time
            message = f"探针 {probe.probe_id} 执行异常: {e}"
            self.logger.error(message, exc_info=True)
            return ExecutionResult.failed(
                probe.probe_id,
                ProbeExecutionError(message, probe_id=probe.probe_id, cause=e),
                duration,
            )

        duration = time.monotonic() - start_time
        self.logger.debug(f"探针 {probe.probe_id} 执行完成: {len(rows)} 行, 用时 {duration:.3f}s")
        return ExecutionResult(
            probe_id=probe.probe_id,
            success=True,
            duration=duration,
            rows=tuple(rows),
        )

    @staticmethod
    async def _fetch(connection: Any, query: str) -> List[Dict[str, Any]]:
        """执行查询并按列名把结果行转换为字典"""
        async with connection.cursor() as cursor:
            await cursor.execute(query)
            columns = [description[0] for description in (cursor.description or ())]
            raw_rows = await cursor.fetchall()
        return [dict(zip(columns, raw_row)) for raw_row in raw_rows]

    @staticmethod
    def _split_server_error(error: Exception):
        """pymysql 错误的 args 通常是 (错误码, 消息)"""
        args = getattr(error, 'args', ())
        if len(args) >= 2 and isinstance(args[0], int):
            return args[0], str(args[1])
        return None, str(error)
