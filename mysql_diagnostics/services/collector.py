"""诊断采集器模块

负责一次采集运行的并发调度：按注册顺序选择探针、在有界并发下执行、
规范化、阈值评估，最后组装报告。也支持按固定间隔定时采集。
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from ..catalog.registry import ProbeCatalog
from ..models.diagnostics import (
    ExecutionResult, Metric, Probe, ProbeCategory, ProbeFailure, Report
)
from ..processing.assembler import ReportAssembler
from ..processing.evaluator import ThresholdEvaluator
from ..processing.normalizer import ResultNormalizer
from ..utils.exceptions import ConnectionExhaustedError, ProbeTimeoutError, SchemaMismatchError
from .execution_engine import ExecutionEngine
from .state_manager import CounterStateManager


class DiagnosticsCollector:
    """诊断采集器

    每个探针一个任务，由信号量限制并发数；每个任务独立签出连接，
    并在任何退出路径上归还或关闭连接。结果写入按注册顺序预留的槽位。
    """

    def __init__(self, catalog: ProbeCatalog, pool: Any,
                 engine: Optional[ExecutionEngine] = None,
                 normalizer: Optional[ResultNormalizer] = None,
                 evaluator: Optional[ThresholdEvaluator] = None,
                 assembler: Optional[ReportAssembler] = None,
                 state_manager: Optional[CounterStateManager] = None,
                 max_workers: int = 4,
                 connection_wait_timeout: float = 5.0,
                 run_timeout: Optional[float] = None,
                 categories: Optional[Iterable[ProbeCategory]] = None,
                 disabled_probes: Optional[Iterable[str]] = None,
                 target: Optional[str] = None):
        """初始化诊断采集器

        Args:
            catalog: 只读探针目录
            pool: 连接池，需提供 acquire(wait_timeout)、release(conn, discard)、kill_query(thread_id)
            max_workers: 最大并发探针数
            connection_wait_timeout: 等待连接的上限（秒）
            run_timeout: 整次运行的超时（秒），None 表示不限制
            categories: 默认采集的分类，None 或空表示全部
            disabled_probes: 跳过的探针标识
            target: 报告中的目标数据库标识，默认取 pool.target
        """
        if max_workers <= 0:
            raise ValueError("max_workers 必须是正整数")

        self.catalog = catalog
        self.pool = pool
        self.engine = engine or ExecutionEngine()
        self.normalizer = normalizer or ResultNormalizer()
        self.evaluator = evaluator or ThresholdEvaluator()
        self.assembler = assembler or ReportAssembler()
        self.state_manager = state_manager
        self.max_workers = max_workers
        self.connection_wait_timeout = connection_wait_timeout
        self.run_timeout = run_timeout
        self.categories = list(categories or [])
        self.disabled_probes = set(disabled_probes or [])
        self.target = target or getattr(pool, 'target', 'unknown')
        self.logger = logging.getLogger(__name__)

        self._abort_event: Optional[asyncio.Event] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.is_running = False

        # 每次定时采集完成后的回调
        self.on_report: Optional[Callable[[Report], Awaitable[None]]] = None

    def set_report_callback(self, callback: Callable[[Report], Awaitable[None]]):
        """设置报告回调函数"""
        self.on_report = callback

    def select_probes(self, categories: Optional[Iterable[ProbeCategory]] = None) -> List[Probe]:
        """按注册顺序选出本次要运行的探针"""
        categories = list(categories) if categories is not None else self.categories
        selected = set(categories) if categories else None
        return [
            probe for probe in self.catalog.list()
            if (selected is None or probe.category in selected)
            and probe.probe_id not in self.disabled_probes
        ]

    def abort(self):
        """中止正在进行的采集运行，已完成的探针结果仍会进入报告"""
        if self._abort_event is not None and not self._abort_event.is_set():
            self.logger.warning("收到中止请求，取消所有执行中的探针")
            self._abort_event.set()

    async def collect(self, categories: Optional[Iterable[ProbeCategory]] = None,
                      run_timeout: Optional[float] = None) -> Report:
        """执行一次采集运行

        Args:
            categories: 本次采集的分类，None 时使用默认配置
            run_timeout: 本次运行的超时（秒），None 时使用默认配置

        Returns:
            Report: 即使部分探针失败或运行被中止也总会返回报告
        """
        probes = self.select_probes(categories)
        run_timeout = self.run_timeout if run_timeout is None else run_timeout
        slots: List[Optional[ExecutionResult]] = [None] * len(probes)

        self.logger.info(
            f"开始采集 {self.target}: {len(probes)} 个探针, 并发 {self.max_workers}")

        interrupted = await self._execute_all(probes, slots, run_timeout)
        report = self._build_report(probes, slots)

        summary = (f"采集完成: 状态 {report.status.value}, "
                   f"{len(report.metrics)} 个指标, {len(report.findings)} 个发现, "
                   f"{len(report.failures)} 个探针失败")
        if interrupted or report.incomplete:
            self.logger.warning(f"{summary}, 未完成探针: {list(report.incomplete_probes)}")
        else:
            self.logger.info(summary)
        return report

    async def _execute_all(self, probes: List[Probe], slots: List[Optional[ExecutionResult]],
                           run_timeout: Optional[float]) -> bool:
        """并发执行全部探针，返回运行是否被超时或中止打断"""
        if not probes:
            return False

        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(self.max_workers)
        self._abort_event = asyncio.Event()

        tasks = [
            asyncio.create_task(self._run_slot(index, probe, slots, semaphore))
            for index, probe in enumerate(probes)
        ]
        abort_waiter = asyncio.create_task(self._abort_event.wait())
        deadline = loop.time() + run_timeout if run_timeout is not None else None
        pending = set(tasks)
        interrupted = False

        try:
            while pending:
                remaining = None if deadline is None else deadline - loop.time()
                if remaining is not None and remaining <= 0:
                    self.logger.warning(f"采集运行超时 ({run_timeout}s)，取消剩余探针")
                    interrupted = True
                    break

                done, _ = await asyncio.wait(
                    pending | {abort_waiter}, timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED)
                pending -= done

                if abort_waiter in done:
                    interrupted = True
                    break
        finally:
            abort_waiter.cancel()
            for task in pending:
                task.cancel()
            # 等待被取消的任务执行完 finally，确保连接全部归还
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for probe, outcome in zip(probes, results):
                if isinstance(outcome, Exception):
                    self.logger.error(f"探针 {probe.probe_id} 任务异常: {outcome}")
            self._abort_event = None

        return interrupted

    async def _run_slot(self, index: int, probe: Probe,
                        slots: List[Optional[ExecutionResult]],
                        semaphore: asyncio.Semaphore):
        """执行单个探针并把结果写入对应槽位"""
        async with semaphore:
            try:
                connection = await self.pool.acquire(self.connection_wait_timeout)
            except ConnectionExhaustedError as e:
                self.logger.warning(f"探针 {probe.probe_id} 无可用连接，跳过: {e.message}")
                slots[index] = ExecutionResult.failed(
                    probe.probe_id,
                    ConnectionExhaustedError(e.message, probe_id=probe.probe_id,
                                             details=dict(e.details), cause=e),
                )
                return

            discard = True
            released = False
            try:
                result = await self.engine.run(probe, connection)
                slots[index] = result
                if result.error_type == ProbeTimeoutError.tag:
                    # 先归还超时连接，池满时 KILL QUERY 才能拿到连接
                    thread_id = self._thread_id(connection)
                    self.pool.release(connection, discard=True)
                    released = True
                    if thread_id is not None:
                        await self._kill_in_flight(probe, thread_id)
                discard = not result.success
            finally:
                if not released:
                    self.pool.release(connection, discard=discard)

    @staticmethod
    def _thread_id(connection: Any) -> Optional[int]:
        """连接在服务端的线程号，取不到时返回 None"""
        thread_id = getattr(connection, 'thread_id', None)
        if not callable(thread_id):
            return None
        return thread_id()

    async def _kill_in_flight(self, probe: Probe, thread_id: int):
        """超时后在服务端终止仍在执行的查询"""
        try:
            killed = await self.pool.kill_query(thread_id)
        except Exception as e:
            self.logger.warning(f"终止探针 {probe.probe_id} 的查询失败: {e}")
            return
        if killed:
            self.logger.info(f"已终止超时探针 {probe.probe_id} 的服务端查询")

    def _build_report(self, probes: List[Probe],
                      slots: List[Optional[ExecutionResult]]) -> Report:
        """按注册顺序规范化、评估并组装报告"""
        metrics: List[Metric] = []
        failures: List[ProbeFailure] = []
        schema_errors: List[SchemaMismatchError] = []
        incomplete: List[str] = []
        tracked: List[str] = []

        for probe, result in zip(probes, slots):
            if result is None:
                # 未开始或被中止的探针不计为失败，只标记为未完成
                incomplete.append(probe.probe_id)
                continue

            if not result.success:
                failures.append(ProbeFailure.from_result(result))
                if result.error_type == ConnectionExhaustedError.tag:
                    incomplete.append(probe.probe_id)
                continue

            normalized = self.normalizer.normalize(result, probe)
            metrics.extend(normalized.metrics)
            schema_errors.extend(normalized.schema_errors)
            tracked.extend(probe.delta_metrics)

        if self.state_manager is not None and tracked:
            metrics = self.state_manager.apply_deltas(metrics, tracked)

        findings = self.evaluator.evaluate_all(metrics)

        return self.assembler.assemble(
            findings=findings,
            metrics=metrics,
            target=self.target,
            failures=failures,
            schema_errors=schema_errors,
            incomplete_probes=incomplete,
        )

    async def start(self, interval: float):
        """按固定间隔循环采集，直到 stop() 被调用

        Args:
            interval: 两次采集开始之间的间隔（秒）
        """
        if self.is_running:
            self.logger.warning("诊断采集器已经在运行")
            return
        if interval <= 0:
            raise ValueError("采集间隔必须是正数")

        self.is_running = True
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        self.logger.info(f"启动定时采集，间隔 {interval}s")

        try:
            while self.is_running:
                started = loop.time()
                try:
                    report = await self.collect()
                    if self.on_report:
                        await self.on_report(report)
                except Exception as e:
                    self.logger.error(f"定时采集异常: {e}", exc_info=True)

                wait = max(0.0, interval - (loop.time() - started))
                try:
                    await asyncio.wait_for(self._stop_event.wait(), wait)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            self.logger.info("定时采集被取消")
            raise
        finally:
            self.is_running = False
            self.logger.info("定时采集已停止")

    async def stop(self):
        """停止定时采集并中止当前运行"""
        if not self.is_running:
            return
        self.logger.info("正在停止诊断采集器...")
        self.is_running = False
        self.abort()
        if self._stop_event is not None:
            self._stop_event.set()
