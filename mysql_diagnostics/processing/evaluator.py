"""阈值评估器"""

import fnmatch
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..models.diagnostics import Finding, Metric, Severity
from ..utils.exceptions import ConfigError
from ..utils.log_manager import get_logger

Threshold = Union[int, float, str]

NUMERIC_OPTIONS = ('crit_above', 'crit_below', 'warn_above', 'warn_below')
EQUALITY_OPTIONS = ('crit_equals', 'crit_not_equals', 'warn_equals', 'warn_not_equals')
RULE_OPTIONS = NUMERIC_OPTIONS + EQUALITY_OPTIONS

# 评估顺序：严重级别先于警告级别
_CHECK_ORDER = (
    ('crit_above', Severity.CRITICAL),
    ('crit_below', Severity.CRITICAL),
    ('crit_equals', Severity.CRITICAL),
    ('crit_not_equals', Severity.CRITICAL),
    ('warn_above', Severity.WARNING),
    ('warn_below', Severity.WARNING),
    ('warn_equals', Severity.WARNING),
    ('warn_not_equals', Severity.WARNING),
)

_MESSAGES = {
    'crit_above': "高于严重阈值",
    'crit_below': "低于严重阈值",
    'crit_equals': "等于严重值",
    'crit_not_equals': "不等于期望值",
    'warn_above': "高于警告阈值",
    'warn_below': "低于警告阈值",
    'warn_equals': "等于警告值",
    'warn_not_equals': "不等于期望值",
}


@dataclass(frozen=True)
class ThresholdRule:
    """单个指标（或通配模式）的阈值规则"""
    pattern: str
    options: Tuple[Tuple[str, Threshold], ...]

    def get(self, option: str) -> Optional[Threshold]:
        for name, value in self.options:
            if name == option:
                return value
        return None

    @property
    def is_pattern(self) -> bool:
        return any(ch in self.pattern for ch in '*?[')

    def matches(self, metric_name: str) -> bool:
        if self.is_pattern:
            return fnmatch.fnmatchcase(metric_name, self.pattern)
        return metric_name == self.pattern

    def to_dict(self) -> Dict[str, Threshold]:
        return dict(self.options)


def parse_rules(config: Optional[Mapping[str, Any]]) -> List[ThresholdRule]:
    """
    把阈值配置解析为规则列表，保持配置中的顺序

    Args:
        config: {metric_name: {warn_above, crit_above, warn_below, crit_below, ...}}

    Returns:
        List[ThresholdRule]: 规则列表

    Raises:
        ConfigError: 出现未知选项或阈值类型无效
    """
    rules: List[ThresholdRule] = []
    if not config:
        return rules

    if not isinstance(config, Mapping):
        raise ConfigError("thresholds 配置必须是字典类型")

    for pattern, options in config.items():
        if not isinstance(options, Mapping) or not options:
            raise ConfigError(f"指标 '{pattern}' 的阈值规则必须是非空字典")

        parsed = []
        for option, value in options.items():
            if option not in RULE_OPTIONS:
                raise ConfigError(
                    f"指标 '{pattern}' 的阈值选项 '{option}' 无效，支持: {list(RULE_OPTIONS)}")
            if option in NUMERIC_OPTIONS:
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ConfigError(f"指标 '{pattern}' 的 {option} 必须是数值")
            elif not isinstance(value, (str, int, float)) or isinstance(value, bool):
                raise ConfigError(f"指标 '{pattern}' 的 {option} 必须是字符串或数值")
            parsed.append((option, value))

        rules.append(ThresholdRule(pattern=str(pattern), options=tuple(parsed)))

    return rules


class ThresholdEvaluator:
    """按配置的阈值评估指标"""

    def __init__(self, rules: Optional[List[ThresholdRule]] = None):
        self.rules = rules or []
        self.logger = get_logger('evaluator')

    @staticmethod
    def find_rule(metric_name: str, rules: List[ThresholdRule]) -> Optional[ThresholdRule]:
        """精确匹配优先，其次按配置顺序取第一个匹配的通配规则"""
        for rule in rules:
            if not rule.is_pattern and rule.pattern == metric_name:
                return rule
        for rule in rules:
            if rule.is_pattern and rule.matches(metric_name):
                return rule
        return None

    def evaluate(self, metric: Metric,
                 rules: Optional[List[ThresholdRule]] = None) -> Optional[Finding]:
        """
        评估单个指标

        Args:
            metric: 规范化后的指标
            rules: 规则列表，默认使用构造时传入的规则

        Returns:
            Optional[Finding]: 命中阈值时返回发现，否则返回 None
        """
        rules = self.rules if rules is None else rules
        rule = self.find_rule(metric.name, rules)
        if rule is None:
            return None

        if metric.is_null:
            self.logger.debug(f"指标 {metric.label_key} 为 NULL，跳过阈值评估")
            return None

        for option, severity in _CHECK_ORDER:
            threshold = rule.get(option)
            if threshold is None:
                continue
            if self._breaches(metric, option, threshold):
                return self._build_finding(metric, rule, option, severity, threshold)

        return None

    def evaluate_all(self, metrics: List[Metric],
                     rules: Optional[List[ThresholdRule]] = None) -> List[Finding]:
        """按指标顺序评估全部指标"""
        findings = []
        for metric in metrics:
            finding = self.evaluate(metric, rules)
            if finding is not None:
                findings.append(finding)
        return findings

    def _breaches(self, metric: Metric, option: str, threshold: Threshold) -> bool:
        value = metric.value

        if option in NUMERIC_OPTIONS:
            if not metric.is_numeric:
                self.logger.debug(
                    f"指标 {metric.name} 不是数值，忽略数值规则 {option}")
                return False
            if option.endswith('_above'):
                return value > threshold
            return value < threshold

        if option.endswith('_not_equals'):
            return not self._equals(value, threshold)
        return self._equals(value, threshold)

    @staticmethod
    def _equals(value: Any, threshold: Threshold) -> bool:
        if isinstance(value, str) or isinstance(threshold, str):
            return str(value) == str(threshold)
        return value == threshold

    @staticmethod
    def _build_finding(metric: Metric, rule: ThresholdRule, option: str,
                       severity: Severity, threshold: Threshold) -> Finding:
        subject = metric.label_key
        if option in EQUALITY_OPTIONS:
            message = f"指标 {subject} 当前值 {metric.value} {_MESSAGES[option]} {threshold}"
        else:
            unit = f" {metric.unit}" if metric.unit else ''
            message = (f"指标 {subject} 当前值 {metric.value}{unit} "
                       f"{_MESSAGES[option]} {threshold}{unit}")
        return Finding(
            metric_name=metric.name,
            severity=severity,
            observed=metric.value,
            threshold=threshold,
            message=message,
            rule=option,
            labels=dict(metric.labels),
        )
