"""报告组装器"""

from datetime import datetime
from typing import Iterable, Optional

from ..models.diagnostics import (
    Finding, Metric, ProbeFailure, Report, Severity
)
from ..utils.exceptions import SchemaMismatchError


def overall_status(findings: Iterable[Finding]) -> Severity:
    """所有发现中的最高严重级别，没有发现时为 Info"""
    status = Severity.INFO
    for finding in findings:
        if finding.severity.rank > status.rank:
            status = finding.severity
    return status


class ReportAssembler:
    """把发现、指标和失败信息聚合为不可变报告"""

    def assemble(self, findings: Iterable[Finding], metrics: Iterable[Metric], target: str,
                 failures: Iterable[ProbeFailure] = (),
                 schema_errors: Iterable[SchemaMismatchError] = (),
                 incomplete_probes: Iterable[str] = (),
                 generated_at: Optional[datetime] = None) -> Report:
        """
        组装报告，输入均已校验，本身不会失败

        Args:
            findings: 按探针注册顺序排列的发现
            metrics: 按探针注册顺序排列的指标
            target: 目标数据库标识
            failures: 探针失败原因
            schema_errors: 被拒绝的结果行
            incomplete_probes: 未完成的探针标识
            generated_at: 生成时间，默认当前时间

        Returns:
            Report: 最终报告
        """
        findings = tuple(findings)
        return Report(
            target=target,
            status=overall_status(findings),
            findings=findings,
            metrics=tuple(metrics),
            failures=tuple(failures),
            schema_errors=tuple(schema_errors),
            incomplete_probes=tuple(incomplete_probes),
            generated_at=generated_at or datetime.now(),
        )
