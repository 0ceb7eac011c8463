"""服务模块：执行、连接池、采集调度、计数器状态和配置"""

from .collector import DiagnosticsCollector
from .config_manager import ConfigManager
from .connection_pool import ConnectionPool
from .execution_engine import ExecutionEngine
from .state_manager import CounterStateManager

__all__ = ['DiagnosticsCollector', 'ConfigManager', 'ConnectionPool', 'ExecutionEngine',
           'CounterStateManager']
