"""结果处理模块：规范化、阈值评估和报告组装"""

from .assembler import ReportAssembler, overall_status
from .evaluator import ThresholdEvaluator, ThresholdRule, parse_rules
from .normalizer import ResultNormalizer, coerce_value

__all__ = ['ResultNormalizer', 'coerce_value', 'ThresholdEvaluator', 'ThresholdRule',
           'parse_rules', 'ReportAssembler', 'overall_status']
