"""自定义异常类和错误处理系统"""

import traceback
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime


class ErrorCode(Enum):
    """错误代码枚举"""
    # 通用错误 (1000-1999)
    UNKNOWN_ERROR = 1000
    INITIALIZATION_ERROR = 1001
    VALIDATION_ERROR = 1002

    # 配置错误 (2000-2999)
    CONFIG_FILE_NOT_FOUND = 2000
    CONFIG_PARSE_ERROR = 2001
    CONFIG_VALIDATION_ERROR = 2002

    # 探针目录错误 (3000-3999)
    CATALOG_ERROR = 3000
    DUPLICATE_PROBE = 3001

    # 查询执行错误 (4000-4999)
    QUERY_TIMEOUT = 4000
    QUERY_EXECUTION_ERROR = 4001
    CONNECTION_ERROR = 4002
    CONNECTION_EXHAUSTED = 4003

    # 结果规范化错误 (5000-5999)
    SCHEMA_MISMATCH = 5000


class DiagnosticsError(Exception):
    """诊断采集系统基础异常类"""

    # 在报告中标识失败类型的标签
    tag = 'DiagnosticsError'

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            'error_code': self.error_code.value,
            'error_name': self.error_code.name,
            'error_type': self.tag,
            'message': self.message,
            'details': self.details,
            'recoverable': self.recoverable,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'traceback': traceback.format_exc() if self.cause else None
        }

    def format_error(self) -> str:
        """格式化错误信息"""
        error_msg = f"[{self.error_code.name}] {self.message}"
        if self.details:
            details_str = ", ".join([f"{k}={v}" for k, v in self.details.items()])
            error_msg += f" (详情: {details_str})"
        if self.cause:
            error_msg += f" (原因: {str(self.cause)})"
        return error_msg


class ConfigError(DiagnosticsError):
    """配置相关异常"""

    tag = 'ConfigError'

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_VALIDATION_ERROR,
        config_path: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if config_path:
            details['config_path'] = config_path
        kwargs.setdefault('recoverable', False)
        super().__init__(message, error_code, details, **kwargs)


class CatalogError(DiagnosticsError):
    """探针目录相关异常"""

    tag = 'CatalogError'

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CATALOG_ERROR,
        probe_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if probe_id:
            details['probe_id'] = probe_id
        kwargs.setdefault('recoverable', False)
        super().__init__(message, error_code, details, **kwargs)


class DuplicateProbeError(CatalogError):
    """探针标识重复注册"""

    tag = 'DuplicateProbeError'

    def __init__(self, probe_id: str, **kwargs):
        super().__init__(
            f"探针 '{probe_id}' 已经注册",
            ErrorCode.DUPLICATE_PROBE,
            probe_id=probe_id,
            **kwargs
        )


class ProbeError(DiagnosticsError):
    """探针执行相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.QUERY_EXECUTION_ERROR,
        probe_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if probe_id:
            details['probe_id'] = probe_id
        super().__init__(message, error_code, details, **kwargs)


class ProbeTimeoutError(ProbeError):
    """探针执行超时"""

    tag = 'TimeoutError'

    def __init__(self, message: str, probe_id: Optional[str] = None,
                 timeout: Optional[float] = None, **kwargs):
        details = kwargs.pop('details', {})
        if timeout is not None:
            details['timeout'] = timeout
        super().__init__(message, ErrorCode.QUERY_TIMEOUT, probe_id=probe_id,
                         details=details, **kwargs)


class ProbeExecutionError(ProbeError):
    """服务器拒绝或执行查询出错"""

    tag = 'ExecutionError'

    def __init__(self, message: str, probe_id: Optional[str] = None,
                 server_code: Optional[int] = None, **kwargs):
        details = kwargs.pop('details', {})
        if server_code is not None:
            details['server_code'] = server_code
        super().__init__(message, ErrorCode.QUERY_EXECUTION_ERROR, probe_id=probe_id,
                         details=details, **kwargs)


class ConnectionExhaustedError(ProbeError):
    """连接池在等待时限内无法提供连接"""

    tag = 'ConnectionExhaustedError'

    def __init__(self, message: str, probe_id: Optional[str] = None,
                 wait_timeout: Optional[float] = None, **kwargs):
        details = kwargs.pop('details', {})
        if wait_timeout is not None:
            details['wait_timeout'] = wait_timeout
        super().__init__(message, ErrorCode.CONNECTION_EXHAUSTED, probe_id=probe_id,
                         details=details, **kwargs)


class ConnectionFailedError(ProbeError):
    """无法建立数据库连接"""

    tag = 'ConnectionError'

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.CONNECTION_ERROR, **kwargs)


class SchemaMismatchError(DiagnosticsError):
    """结果行与探针声明的列结构不一致"""

    tag = 'SchemaMismatchError'

    def __init__(self, message: str, probe_id: str, row_index: int, **kwargs):
        details = kwargs.pop('details', {})
        details['probe_id'] = probe_id
        details['row_index'] = row_index
        super().__init__(message, ErrorCode.SCHEMA_MISMATCH, details, **kwargs)
        self.probe_id = probe_id
        self.row_index = row_index
