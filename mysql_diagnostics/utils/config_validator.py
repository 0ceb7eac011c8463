"""配置验证工具"""

from typing import Dict, Any

from .exceptions import ConfigError
from ..models.diagnostics import ProbeCategory


def _is_positive_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


class ConfigValidator:
    """配置验证器"""

    @staticmethod
    def validate_global_config(global_config: Dict[str, Any]) -> None:
        """
        验证全局配置

        Args:
            global_config: 全局配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(global_config, dict):
            raise ConfigError("全局配置必须是字典类型")

        max_workers = global_config.get('max_workers')
        if max_workers is not None:
            if not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers <= 0:
                raise ConfigError("max_workers 必须是正整数")

        for key in ('default_timeout', 'run_timeout', 'connection_wait_timeout', 'interval'):
            value = global_config.get(key)
            if value is not None and not _is_positive_number(value):
                raise ConfigError(f"{key} 必须是正数")

        log_level = global_config.get('log_level')
        if log_level is not None:
            valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
            if log_level not in valid_levels:
                raise ConfigError(f"log_level 必须是以下值之一: {valid_levels}")

    @staticmethod
    def validate_database_config(database_config: Dict[str, Any]) -> None:
        """
        验证数据库连接配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(database_config, dict):
            raise ConfigError("database 配置必须是字典类型")

        if 'host' not in database_config:
            raise ConfigError("database 配置缺少必需的配置项: host")

        port = database_config.get('port', 3306)
        if not isinstance(port, int) or isinstance(port, bool) or port <= 0 or port > 65535:
            raise ConfigError(f"MySQL端口号无效: {port}")

        pool_size = database_config.get('pool_size')
        if pool_size is not None:
            if not isinstance(pool_size, int) or isinstance(pool_size, bool) or pool_size <= 0:
                raise ConfigError("pool_size 必须是正整数")

        connect_timeout = database_config.get('connect_timeout')
        if connect_timeout is not None and not _is_positive_number(connect_timeout):
            raise ConfigError("connect_timeout 必须是正数")

    @staticmethod
    def validate_collection_config(collection_config: Dict[str, Any]) -> None:
        """
        验证采集范围配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(collection_config, dict):
            raise ConfigError("collection 配置必须是字典类型")

        categories = collection_config.get('categories', [])
        if not isinstance(categories, list):
            raise ConfigError("categories 必须是列表类型")
        for name in categories:
            try:
                ProbeCategory.from_name(str(name))
            except ValueError:
                supported = [c.value for c in ProbeCategory]
                raise ConfigError(f"探针分类 '{name}' 不受支持。支持的分类: {supported}")

        disabled = collection_config.get('disabled_probes', [])
        if not isinstance(disabled, list):
            raise ConfigError("disabled_probes 必须是列表类型")

        probe_timeouts = collection_config.get('probe_timeouts', {})
        if not isinstance(probe_timeouts, dict):
            raise ConfigError("probe_timeouts 必须是字典类型")
        for probe_id, timeout in probe_timeouts.items():
            if not _is_positive_number(timeout):
                raise ConfigError(f"探针 '{probe_id}' 的超时时间必须是正数")
