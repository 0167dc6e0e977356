"""业务异常定义：按暂存、编排、提交、轮询与回调划分错误类型。"""

from __future__ import annotations


class AutomationError(RuntimeError):
    """所有编排错误的基类。"""


class StagingError(AutomationError):
    """对象存储读写失败。"""


class ArtifactReadError(StagingError):
    pass


class BucketProvisioningError(StagingError):
    pass


class ArtifactUploadError(StagingError):
    pass


class ProvisioningError(AutomationError):
    """bundle/activity 创建失败，包括远端返回空版本的情况。"""


class UnsupportedEngineError(AutomationError):
    """引擎标识无法映射到命令模板。"""


class SubmissionError(AutomationError):
    """工作项创建失败。"""


class PollingError(AutomationError):
    """轮询期间的传输失败或状态负载异常。"""


class PollingTimeoutError(PollingError):
    pass


class MonitorCancelledError(PollingError):
    pass


class CallbackParseError(AutomationError):
    """回调负载格式不合法。"""


class TokenError(AutomationError):
    """APS 令牌无法获取：凭据缺失或令牌响应不合法。"""
