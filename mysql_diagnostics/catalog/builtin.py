"""内置诊断探针清单

覆盖十个诊断分类。所有查询均为只读；依赖 performance_schema 或 sys
的探针在未启用这些库的实例上会以 ExecutionError 失败，不影响其他探针。
"""

from typing import Any, Dict, List, Optional

from ..models.diagnostics import (
    NULL, ColumnSpec, ColumnType, DerivedMetric, Probe, ProbeCategory
)
from .registry import ProbeCatalog

CATALOG_VERSION = '2024.1'

_SYSTEM_SCHEMAS = "('mysql', 'information_schema', 'performance_schema', 'sys')"


def _first_row(rows: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    return rows[0] if rows else None


def _is_number(value: Any) -> bool:
    return value is not NULL and isinstance(value, (int, float))


def buffer_pool_hit_rate(rows: List[Dict[str, Any]]) -> Optional[float]:
    """缓冲池命中率 = (1 - 磁盘读 / 逻辑读请求) * 100，保留两位小数"""
    row = _first_row(rows)
    if row is None:
        return None
    read_requests = row.get('read_requests')
    disk_reads = row.get('disk_reads')
    if not _is_number(read_requests) or not _is_number(disk_reads) or read_requests <= 0:
        return None
    return round((1 - disk_reads / read_requests) * 100, 2)


def buffer_pool_free_percent(rows: List[Dict[str, Any]]) -> Optional[float]:
    row = _first_row(rows)
    if row is None:
        return None
    total = row.get('pages_total')
    free = row.get('pages_free')
    if not _is_number(total) or not _is_number(free) or total <= 0:
        return None
    return round(free / total * 100, 2)


def connection_utilization(rows: List[Dict[str, Any]]) -> Optional[float]:
    row = _first_row(rows)
    if row is None:
        return None
    connected = row.get('threads_connected')
    maximum = row.get('max_connections')
    if not _is_number(connected) or not _is_number(maximum) or maximum <= 0:
        return None
    return round(connected / maximum * 100, 2)


def column_max(column: str):
    """生成取某列最大值的聚合函数，忽略 NULL"""
    def compute(rows: List[Dict[str, Any]]) -> Optional[float]:
        values = [row[column] for row in rows if _is_number(row.get(column))]
        return max(values) if values else None
    compute.__name__ = f'max_{column}'
    return compute


def column_sum(column: str):
    """生成对某列求和的聚合函数，忽略 NULL"""
    def compute(rows: List[Dict[str, Any]]) -> Optional[float]:
        values = [row[column] for row in rows if _is_number(row.get(column))]
        return sum(values) if values else None
    compute.__name__ = f'sum_{column}'
    return compute


def _status_pivot(columns: Dict[str, str]) -> str:
    """把 global_status 的多行变量转换为单行多列"""
    selects = ",\n    ".join(
        f"SUM(IF(VARIABLE_NAME = '{variable}', VARIABLE_VALUE, 0)) AS {alias}"
        for alias, variable in columns.items()
    )
    names = ", ".join(f"'{variable}'" for variable in columns.values())
    return (
        f"SELECT\n    {selects}\n"
        f"FROM performance_schema.global_status\n"
        f"WHERE VARIABLE_NAME IN ({names})"
    )


BUILTIN_PROBES = [
    # ---- HealthCheck ----
    Probe(
        probe_id='health_check',
        category=ProbeCategory.HEALTH_CHECK,
        description='连通性、版本和只读状态',
        query="SELECT 1 AS alive, VERSION() AS version, @@global.read_only AS read_only",
        columns=(
            ColumnSpec('alive', ColumnType.INTEGER),
            ColumnSpec('version', ColumnType.STRING),
            ColumnSpec('read_only', ColumnType.INTEGER),
        ),
        timeout=5,
    ),
    Probe(
        probe_id='server_uptime',
        category=ProbeCategory.HEALTH_CHECK,
        description='实例已运行时间',
        query=(
            "SELECT VARIABLE_VALUE AS uptime\n"
            "FROM performance_schema.global_status\n"
            "WHERE VARIABLE_NAME = 'Uptime'"
        ),
        columns=(ColumnSpec('uptime', ColumnType.DURATION_S),),
        timeout=5,
    ),

    # ---- GlobalStatus ----
    Probe(
        probe_id='global_status',
        category=ProbeCategory.GLOBAL_STATUS,
        description='连接、线程和查询计数器',
        query=(
            "SELECT s.*, @@global.max_connections AS max_connections FROM (\n"
            + _status_pivot({
                'threads_connected': 'Threads_connected',
                'threads_running': 'Threads_running',
                'max_used_connections': 'Max_used_connections',
                'questions': 'Questions',
                'slow_queries': 'Slow_queries',
                'aborted_connects': 'Aborted_connects',
            })
            + "\n) AS s"
        ),
        columns=(
            ColumnSpec('threads_connected', ColumnType.INTEGER),
            ColumnSpec('threads_running', ColumnType.INTEGER),
            ColumnSpec('max_used_connections', ColumnType.INTEGER),
            ColumnSpec('questions', ColumnType.INTEGER),
            ColumnSpec('slow_queries', ColumnType.INTEGER),
            ColumnSpec('aborted_connects', ColumnType.INTEGER),
            ColumnSpec('max_connections', ColumnType.INTEGER),
        ),
        derived=(
            DerivedMetric('connection_utilization_percent', connection_utilization, 'percent'),
        ),
        delta_metrics=('global_status.slow_queries', 'global_status.aborted_connects'),
    ),

    # ---- BufferPool ----
    Probe(
        probe_id='buffer_pool',
        category=ProbeCategory.BUFFER_POOL,
        description='InnoDB 缓冲池读命中率和空闲页',
        query=_status_pivot({
            'read_requests': 'Innodb_buffer_pool_read_requests',
            'disk_reads': 'Innodb_buffer_pool_reads',
            'pages_total': 'Innodb_buffer_pool_pages_total',
            'pages_free': 'Innodb_buffer_pool_pages_free',
        }),
        columns=(
            ColumnSpec('read_requests', ColumnType.INTEGER),
            ColumnSpec('disk_reads', ColumnType.INTEGER),
            ColumnSpec('pages_total', ColumnType.INTEGER),
            ColumnSpec('pages_free', ColumnType.INTEGER),
        ),
        derived=(
            DerivedMetric('hit_rate_percent', buffer_pool_hit_rate, 'percent'),
            DerivedMetric('free_pages_percent', buffer_pool_free_percent, 'percent'),
        ),
    ),

    # ---- DeadlockAudit ----
    Probe(
        probe_id='deadlocks',
        category=ProbeCategory.DEADLOCK_AUDIT,
        description='启动以来的死锁次数',
        query=(
            "SELECT `COUNT` AS deadlock_count\n"
            "FROM information_schema.INNODB_METRICS\n"
            "WHERE NAME = 'lock_deadlocks'"
        ),
        columns=(ColumnSpec('deadlock_count', ColumnType.INTEGER),),
        delta_metrics=('deadlocks.deadlock_count',),
    ),
    Probe(
        probe_id='row_lock_waits',
        category=ProbeCategory.DEADLOCK_AUDIT,
        description='InnoDB 行锁等待次数与耗时',
        query=_status_pivot({
            'row_lock_waits': 'Innodb_row_lock_waits',
            'row_lock_current_waits': 'Innodb_row_lock_current_waits',
            'row_lock_time': 'Innodb_row_lock_time',
            'row_lock_time_avg': 'Innodb_row_lock_time_avg',
            'row_lock_time_max': 'Innodb_row_lock_time_max',
        }),
        columns=(
            ColumnSpec('row_lock_waits', ColumnType.INTEGER),
            ColumnSpec('row_lock_current_waits', ColumnType.INTEGER),
            ColumnSpec('row_lock_time', ColumnType.DURATION_MS),
            ColumnSpec('row_lock_time_avg', ColumnType.DURATION_MS),
            ColumnSpec('row_lock_time_max', ColumnType.DURATION_MS),
        ),
        delta_metrics=('row_lock_waits.row_lock_waits',),
    ),

    # ---- ProcessMonitoring ----
    Probe(
        probe_id='active_processes',
        category=ProbeCategory.PROCESS_MONITORING,
        description='非空闲会话及其执行时长',
        query=(
            "SELECT ID AS id, USER AS user, DB AS db, COMMAND AS command,\n"
            "       TIME AS time, STATE AS state\n"
            "FROM information_schema.PROCESSLIST\n"
            "WHERE COMMAND NOT IN ('Sleep', 'Daemon', 'Binlog Dump')\n"
            "  AND ID <> CONNECTION_ID()\n"
            "ORDER BY TIME DESC\n"
            "LIMIT 50"
        ),
        columns=(
            ColumnSpec('id', ColumnType.INTEGER),
            ColumnSpec('user', ColumnType.STRING),
            ColumnSpec('db', ColumnType.STRING),
            ColumnSpec('command', ColumnType.STRING),
            ColumnSpec('time', ColumnType.DURATION_S),
            ColumnSpec('state', ColumnType.STRING),
        ),
        label_columns=('id', 'user', 'db', 'command', 'state'),
        count_metric='active_count',
        derived=(DerivedMetric('longest_seconds', column_max('time'), 'seconds'),),
    ),

    # ---- PerformanceSchema ----
    Probe(
        probe_id='top_statements',
        category=ProbeCategory.PERFORMANCE_SCHEMA,
        description='按总耗时排序的语句摘要',
        query=(
            "SELECT SCHEMA_NAME AS schema_name, DIGEST AS digest,\n"
            "       COUNT_STAR AS exec_count, SUM_TIMER_WAIT AS total_latency,\n"
            "       AVG_TIMER_WAIT AS avg_latency, SUM_ROWS_EXAMINED AS rows_examined\n"
            "FROM performance_schema.events_statements_summary_by_digest\n"
            "WHERE DIGEST IS NOT NULL\n"
            "ORDER BY SUM_TIMER_WAIT DESC\n"
            "LIMIT 10"
        ),
        columns=(
            ColumnSpec('schema_name', ColumnType.STRING),
            ColumnSpec('digest', ColumnType.STRING),
            ColumnSpec('exec_count', ColumnType.INTEGER),
            ColumnSpec('total_latency', ColumnType.DURATION_PS),
            ColumnSpec('avg_latency', ColumnType.DURATION_PS),
            ColumnSpec('rows_examined', ColumnType.INTEGER),
        ),
        label_columns=('schema_name', 'digest'),
        timeout=15,
    ),

    # ---- SlowQuery ----
    Probe(
        probe_id='slow_query_settings',
        category=ProbeCategory.SLOW_QUERY,
        description='慢查询日志开关和阈值',
        query=(
            "SELECT IF(@@global.slow_query_log, 'ON', 'OFF') AS slow_query_log,\n"
            "       @@global.long_query_time AS long_query_time"
        ),
        columns=(
            ColumnSpec('slow_query_log', ColumnType.STRING),
            ColumnSpec('long_query_time', ColumnType.DURATION_S),
        ),
        timeout=5,
    ),
    Probe(
        probe_id='slowest_statements',
        category=ProbeCategory.SLOW_QUERY,
        description='运行时间处于95分位以上的语句',
        query=(
            "SELECT db, digest, exec_count, total_latency, max_latency, avg_latency\n"
            "FROM sys.`x$statements_with_runtimes_in_95th_percentile`\n"
            "ORDER BY total_latency DESC\n"
            "LIMIT 10"
        ),
        columns=(
            ColumnSpec('db', ColumnType.STRING),
            ColumnSpec('digest', ColumnType.STRING),
            ColumnSpec('exec_count', ColumnType.INTEGER),
            ColumnSpec('total_latency', ColumnType.DURATION_PS),
            ColumnSpec('max_latency', ColumnType.DURATION_PS),
            ColumnSpec('avg_latency', ColumnType.DURATION_PS),
        ),
        label_columns=('db', 'digest'),
        derived=(
            DerivedMetric('slowest_total_seconds', column_max('total_latency'), 'seconds'),
        ),
        timeout=15,
    ),

    # ---- SizeIndex ----
    Probe(
        probe_id='largest_tables',
        category=ProbeCategory.SIZE_INDEX,
        description='数据加索引体积最大的表',
        query=(
            "SELECT TABLE_SCHEMA AS table_schema, TABLE_NAME AS table_name,\n"
            "       TABLE_ROWS AS table_rows, DATA_LENGTH AS data_bytes,\n"
            "       INDEX_LENGTH AS index_bytes\n"
            "FROM information_schema.TABLES\n"
            f"WHERE TABLE_SCHEMA NOT IN {_SYSTEM_SCHEMAS}\n"
            "  AND TABLE_TYPE = 'BASE TABLE'\n"
            "ORDER BY DATA_LENGTH + INDEX_LENGTH DESC\n"
            "LIMIT 20"
        ),
        columns=(
            ColumnSpec('table_schema', ColumnType.STRING),
            ColumnSpec('table_name', ColumnType.STRING),
            ColumnSpec('table_rows', ColumnType.INTEGER),
            ColumnSpec('data_bytes', ColumnType.BYTES),
            ColumnSpec('index_bytes', ColumnType.BYTES),
        ),
        label_columns=('table_schema', 'table_name'),
        derived=(
            DerivedMetric('total_data_bytes', column_sum('data_bytes'), 'bytes'),
            DerivedMetric('total_index_bytes', column_sum('index_bytes'), 'bytes'),
        ),
        timeout=30,
    ),
    Probe(
        probe_id='unused_indexes',
        category=ProbeCategory.SIZE_INDEX,
        description='自启动以来从未使用过的二级索引',
        query=(
            "SELECT OBJECT_SCHEMA AS object_schema, OBJECT_NAME AS object_name,\n"
            "       INDEX_NAME AS index_name\n"
            "FROM performance_schema.table_io_waits_summary_by_index_usage\n"
            "WHERE INDEX_NAME IS NOT NULL\n"
            "  AND INDEX_NAME <> 'PRIMARY'\n"
            "  AND COUNT_STAR = 0\n"
            f"  AND OBJECT_SCHEMA NOT IN {_SYSTEM_SCHEMAS}\n"
            "ORDER BY OBJECT_SCHEMA, OBJECT_NAME"
        ),
        columns=(
            ColumnSpec('object_schema', ColumnType.STRING),
            ColumnSpec('object_name', ColumnType.STRING),
            ColumnSpec('index_name', ColumnType.STRING),
        ),
        label_columns=('object_schema', 'object_name', 'index_name'),
        count_metric='unused_index_count',
        timeout=30,
    ),

    # ---- DataQuality ----
    Probe(
        probe_id='tables_without_primary_key',
        category=ProbeCategory.DATA_QUALITY,
        description='没有主键的业务表',
        query=(
            "SELECT t.TABLE_SCHEMA AS table_schema, t.TABLE_NAME AS table_name,\n"
            "       t.TABLE_ROWS AS table_rows\n"
            "FROM information_schema.TABLES t\n"
            "LEFT JOIN information_schema.TABLE_CONSTRAINTS tc\n"
            "  ON t.TABLE_SCHEMA = tc.TABLE_SCHEMA\n"
            " AND t.TABLE_NAME = tc.TABLE_NAME\n"
            " AND tc.CONSTRAINT_TYPE = 'PRIMARY KEY'\n"
            "WHERE tc.CONSTRAINT_NAME IS NULL\n"
            f"  AND t.TABLE_SCHEMA NOT IN {_SYSTEM_SCHEMAS}\n"
            "  AND t.TABLE_TYPE = 'BASE TABLE'\n"
            "ORDER BY t.TABLE_ROWS DESC"
        ),
        columns=(
            ColumnSpec('table_schema', ColumnType.STRING),
            ColumnSpec('table_name', ColumnType.STRING),
            ColumnSpec('table_rows', ColumnType.INTEGER),
        ),
        label_columns=('table_schema', 'table_name'),
        count_metric='table_count',
        timeout=30,
    ),

    # ---- AppointmentLookup ----
    Probe(
        probe_id='appointment_tables',
        category=ProbeCategory.APPOINTMENT_LOOKUP,
        description='预约相关表的行数和距上次写入的时间',
        query=(
            "SELECT TABLE_SCHEMA AS table_schema, TABLE_NAME AS table_name,\n"
            "       TABLE_ROWS AS table_rows,\n"
            "       TIMESTAMPDIFF(SECOND, UPDATE_TIME, NOW()) AS since_last_update\n"
            "FROM information_schema.TABLES\n"
            "WHERE TABLE_NAME LIKE '%appointment%'\n"
            f"  AND TABLE_SCHEMA NOT IN {_SYSTEM_SCHEMAS}\n"
            "ORDER BY TABLE_SCHEMA, TABLE_NAME"
        ),
        columns=(
            ColumnSpec('table_schema', ColumnType.STRING),
            ColumnSpec('table_name', ColumnType.STRING),
            ColumnSpec('table_rows', ColumnType.INTEGER),
            ColumnSpec('since_last_update', ColumnType.DURATION_S),
        ),
        label_columns=('table_schema', 'table_name'),
        count_metric='table_count',
        timeout=30,
    ),
]


def build_default_catalog() -> ProbeCatalog:
    """
    构建并冻结内置探针目录

    Returns:
        ProbeCatalog: 只读目录

    Raises:
        DuplicateProbeError: 内置清单中存在重复标识
    """
    catalog = ProbeCatalog(version=CATALOG_VERSION)
    catalog.register_all(BUILTIN_PROBES)
    return catalog.freeze()
