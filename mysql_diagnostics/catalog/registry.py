"""诊断探针目录"""

import re
from typing import Dict, Iterable, Iterator, List, Optional

from ..models.diagnostics import Probe, ProbeCategory
from ..utils.exceptions import CatalogError, DuplicateProbeError
from ..utils.log_manager import get_logger

# 只允许只读语句
_READ_ONLY_PATTERN = re.compile(r'^\s*(SELECT|SHOW|WITH)\b', re.IGNORECASE)


class _ProbeView:
    """目录的惰性视图，每次迭代都重新遍历，可重复使用"""

    def __init__(self, probes: List[Probe], category: Optional[ProbeCategory]):
        self._probes = probes
        self._category = category

    def __iter__(self) -> Iterator[Probe]:
        for probe in self._probes:
            if self._category is None or probe.category == self._category:
                yield probe


class ProbeCatalog:
    """探针目录，进程启动时填充，之后只读"""

    def __init__(self, version: str = ''):
        """
        初始化目录

        Args:
            version: 内置探针清单的版本号
        """
        self.version = version
        self._probes: List[Probe] = []
        self._index: Dict[str, Probe] = {}
        self._frozen = False
        self.logger = get_logger('catalog')

    def register(self, probe: Probe) -> Probe:
        """
        注册探针

        Args:
            probe: 探针定义

        Returns:
            Probe: 已注册的探针

        Raises:
            DuplicateProbeError: 探针标识已存在
            CatalogError: 目录已冻结或探针定义无效
        """
        if self._frozen:
            raise CatalogError(f"目录已冻结，不能注册探针 '{probe.probe_id}'",
                               probe_id=probe.probe_id)

        if probe.probe_id in self._index:
            raise DuplicateProbeError(probe.probe_id)

        self._validate_probe(probe)

        self._probes.append(probe)
        self._index[probe.probe_id] = probe
        self.logger.debug(f"注册探针: {probe.probe_id} ({probe.category.value})")
        return probe

    def register_all(self, probes: Iterable[Probe]) -> None:
        """按顺序注册一组探针"""
        for probe in probes:
            self.register(probe)

    @staticmethod
    def _validate_probe(probe: Probe) -> None:
        """检查探针定义的一致性"""
        if not probe.probe_id:
            raise CatalogError("探针标识不能为空")

        if not _READ_ONLY_PATTERN.match(probe.query):
            raise CatalogError(f"探针 '{probe.probe_id}' 的查询必须是只读语句",
                               probe_id=probe.probe_id)

        if not probe.columns:
            raise CatalogError(f"探针 '{probe.probe_id}' 没有声明结果列",
                               probe_id=probe.probe_id)

        names = probe.column_names
        if len(set(names)) != len(names):
            raise CatalogError(f"探针 '{probe.probe_id}' 的结果列名重复",
                               probe_id=probe.probe_id)

        unknown_labels = set(probe.label_columns) - set(names)
        if unknown_labels:
            raise CatalogError(
                f"探针 '{probe.probe_id}' 的标签列未在结果列中声明: {sorted(unknown_labels)}",
                probe_id=probe.probe_id)

        if probe.timeout is not None and probe.timeout <= 0:
            raise CatalogError(f"探针 '{probe.probe_id}' 的超时时间必须为正数",
                               probe_id=probe.probe_id)

    def freeze(self) -> 'ProbeCatalog':
        """冻结目录，此后不再允许注册"""
        self._frozen = True
        self.logger.info(f"探针目录已就绪: {len(self._probes)} 个探针, 版本 {self.version or '-'}")
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def list(self, category: Optional[ProbeCategory] = None) -> Iterable[Probe]:
        """
        按注册顺序列出探针

        Args:
            category: 只返回该分类的探针，None 表示全部

        Returns:
            可重复迭代的探针序列
        """
        return _ProbeView(self._probes, category)

    def get(self, probe_id: str) -> Probe:
        """
        获取指定探针

        Raises:
            CatalogError: 探针不存在
        """
        if probe_id not in self._index:
            raise CatalogError(f"未知的探针: '{probe_id}'", probe_id=probe_id)
        return self._index[probe_id]

    def __contains__(self, probe_id: str) -> bool:
        return probe_id in self._index

    def __len__(self) -> int:
        return len(self._probes)

    def get_categories(self) -> List[ProbeCategory]:
        """返回目录中出现的分类，按首次出现的顺序"""
        seen: List[ProbeCategory] = []
        for probe in self._probes:
            if probe.category not in seen:
                seen.append(probe.category)
        return seen
