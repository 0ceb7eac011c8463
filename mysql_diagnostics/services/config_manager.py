"""配置管理器"""

import os
from typing import Any, Dict, List, Optional

import yaml

from ..models.diagnostics import ProbeCategory
from ..processing.evaluator import ThresholdRule, parse_rules
from ..utils.config_validator import ConfigValidator
from ..utils.exceptions import ConfigError, ErrorCode
from ..utils.log_manager import get_logger


class ConfigManager:
    """配置管理器，负责YAML配置文件的加载、解析和验证"""

    def __init__(self, config_path: str):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.logger = get_logger('config_manager')

    def load_config(self) -> Dict[str, Any]:
        """
        加载YAML配置文件

        Returns:
            Dict[str, Any]: 配置字典

        Raises:
            ConfigError: 配置加载或验证失败
        """
        self.logger.info(f"开始加载配置文件: {self.config_path}")

        if not os.path.exists(self.config_path):
            self.logger.error(f"配置文件不存在: {self.config_path}")
            raise ConfigError(f"配置文件不存在: {self.config_path}",
                              ErrorCode.CONFIG_FILE_NOT_FOUND, config_path=self.config_path)

        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                config = yaml.safe_load(file)
        except yaml.YAMLError as e:
            self.logger.error(f"YAML格式错误: {e}")
            raise ConfigError(f"YAML格式错误: {e}", ErrorCode.CONFIG_PARSE_ERROR,
                              config_path=self.config_path, cause=e)
        except PermissionError as e:
            self.logger.error(f"没有权限读取配置文件: {self.config_path}")
            raise ConfigError(f"没有权限读取配置文件: {self.config_path}",
                              config_path=self.config_path, cause=e)

        if config is None:
            self.logger.error("配置文件为空")
            raise ConfigError("配置文件为空", config_path=self.config_path)

        self.validate(config)

        rules_count = len(config.get('thresholds') or {})
        categories = (config.get('collection') or {}).get('categories') or ['全部']
        self.logger.info(
            f"配置验证成功，采集分类 {categories}，包含 {rules_count} 条阈值规则")

        self.config = config
        return self.config

    @staticmethod
    def validate(config: Any) -> None:
        """
        验证配置文件内容

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError("配置文件根节点必须是字典类型")

        if 'database' not in config:
            raise ConfigError("配置文件缺少 database 配置")
        ConfigValidator.validate_database_config(config['database'])

        if 'global' in config:
            ConfigValidator.validate_global_config(config['global'] or {})

        if 'collection' in config:
            ConfigValidator.validate_collection_config(config['collection'] or {})

        # 阈值规则解析失败时直接抛出 ConfigError
        parse_rules(config.get('thresholds'))

    def get_global_config(self) -> Dict[str, Any]:
        """获取全局配置"""
        return self.config.get('global') or {}

    def get_database_config(self) -> Dict[str, Any]:
        """获取数据库连接配置"""
        return self.config.get('database') or {}

    def get_collection_config(self) -> Dict[str, Any]:
        """获取采集范围配置"""
        return self.config.get('collection') or {}

    def get_categories(self) -> List[ProbeCategory]:
        """获取要采集的分类，空列表表示全部"""
        names = self.get_collection_config().get('categories') or []
        return [ProbeCategory.from_name(str(name)) for name in names]

    def get_probe_timeouts(self) -> Dict[str, float]:
        """获取按探针覆盖的超时时间"""
        return dict(self.get_collection_config().get('probe_timeouts') or {})

    def get_disabled_probes(self) -> List[str]:
        """获取被禁用的探针"""
        return list(self.get_collection_config().get('disabled_probes') or [])

    def get_threshold_rules(self) -> List[ThresholdRule]:
        """获取解析后的阈值规则"""
        return parse_rules(self.config.get('thresholds'))

    def get_state_file(self) -> Optional[str]:
        """获取计数器状态文件路径"""
        return self.get_global_config().get('state_file')
