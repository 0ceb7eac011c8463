"""计数器状态管理器模块

记录累计计数器（死锁次数、行锁等待次数等）上一次采集的值，
并据此生成“自上次运行以来”的增量指标。
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from ..models.diagnostics import Metric


class CounterStateManager:
    """计数器状态管理器

    以“指标名+标签”为键保存上次的数值，可选持久化到JSON文件，
    使增量在进程重启后依然连续。
    """

    DELTA_SUFFIX = '_delta'

    def __init__(self, persistence_file: Optional[str] = None):
        """初始化状态管理器

        Args:
            persistence_file: 状态持久化文件路径，如果为None则不持久化
        """
        self.previous_values: Dict[str, Union[int, float]] = {}
        self.last_updated: Optional[datetime] = None
        self.persistence_file = persistence_file
        self.logger = logging.getLogger(__name__)

        if self.persistence_file:
            self._load_state()

    def apply_deltas(self, metrics: Iterable[Metric],
                     tracked: Iterable[str]) -> List[Metric]:
        """为被跟踪的计数器生成增量指标

        Args:
            metrics: 本次运行按顺序排列的指标
            tracked: 需要计算增量的指标名

        Returns:
            原指标列表，每个被跟踪指标之后紧跟其增量指标（首次出现时没有增量）
        """
        tracked = set(tracked)
        output: List[Metric] = []

        for metric in metrics:
            output.append(metric)
            if metric.name not in tracked or not metric.is_numeric:
                continue

            key = metric.label_key
            previous = self.previous_values.get(key)
            self.previous_values[key] = metric.value

            if previous is None:
                self.logger.info(f"计数器 {key} 初始值: {metric.value}")
                continue

            delta = metric.value - previous
            if delta < 0:
                # 计数器被重置（例如实例重启），本次值即为重置后的增量
                self.logger.warning(
                    f"计数器 {key} 发生重置: {previous} -> {metric.value}")
                delta = metric.value

            output.append(Metric(
                name=f"{metric.name}{self.DELTA_SUFFIX}",
                value=delta,
                unit=metric.unit,
                sources=metric.sources,
                labels=metric.labels,
            ))

        self.last_updated = datetime.now()
        if self.persistence_file:
            self._save_state()

        return output

    def get_previous(self, key: str) -> Optional[Union[int, float]]:
        """获取计数器上一次的值"""
        return self.previous_values.get(key)

    def reset(self):
        """清空所有计数器状态"""
        self.previous_values.clear()
        self.last_updated = None
        self.logger.debug("已清空计数器状态")

    def _save_state(self):
        """保存状态到文件"""
        try:
            Path(self.persistence_file).parent.mkdir(parents=True, exist_ok=True)

            state_data = {
                'previous_values': self.previous_values,
                'last_updated': self.last_updated.isoformat() if self.last_updated else None,
            }

            with open(self.persistence_file, 'w', encoding='utf-8') as f:
                json.dump(state_data, f, ensure_ascii=False, indent=2)

        except (OSError, TypeError) as e:
            self.logger.error(f"保存计数器状态失败: {e}")

    def _load_state(self):
        """从文件加载状态"""
        if not os.path.exists(self.persistence_file):
            return

        try:
            with open(self.persistence_file, 'r', encoding='utf-8') as f:
                state_data = json.load(f)

            self.previous_values = {
                key: value for key, value in state_data.get('previous_values', {}).items()
                if isinstance(value, (int, float))
            }
            last_updated = state_data.get('last_updated')
            self.last_updated = datetime.fromisoformat(last_updated) if last_updated else None

            self.logger.info(
                f"从 {self.persistence_file} 加载了 {len(self.previous_values)} 个计数器状态")

        except (OSError, ValueError) as e:
            self.logger.error(f"加载计数器状态失败: {e}")
