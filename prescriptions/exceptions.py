"""
统一异常体系。

所有业务异常继承 BaseAppException，包含：
- type:        错误类型标识（validation_error / not_found / forbidden / ...）
- code:        业务错误码（MISSING_EMAIL_DATA / DUPLICATE_REQUEST / ...）
- message:     人类可读的描述
- detail:      可选的附加信息（dict / list / None）
- http_status: HTTP 状态码

Service 层只需 raise，exception_handler 统一捕获并格式化成
{success: false, type, errorCode, message, detail?}。

TransportError 只在通知层内部使用：dispatcher 捕获后记录日志，
永远不会传到 create / update_status 的调用方。
"""


class BaseAppException(Exception):
    """所有业务异常的基类。"""

    type = 'error'
    code = 'UNKNOWN_ERROR'
    http_status = 500

    def __init__(self, message, code=None, detail=None, http_status=None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.detail = detail
        super().__init__(message)


class ValidationError(BaseAppException):
    """输入不合法：缺字段、枚举值错误、email 投递所需联系信息缺失、重复申请。400。"""

    type = 'validation_error'
    code = 'VALIDATION_ERROR'
    http_status = 400


class NotFound(BaseAppException):
    """id 不存在。404。"""

    type = 'not_found'
    code = 'NOT_FOUND'
    http_status = 404


class Forbidden(BaseAppException):
    """角色不符，或患者访问别人的处方。403。"""

    type = 'forbidden'
    code = 'FORBIDDEN'
    http_status = 403


class PersistenceError(BaseAppException):
    """存储不可用。500。"""

    type = 'error'
    code = 'PERSISTENCE_ERROR'
    http_status = 500


class TransportError(BaseAppException):
    """邮件 / 推送发送失败。只在通知层内部流转。"""

    type = 'transport_error'
    code = 'TRANSPORT_ERROR'
    http_status = 502


class SubscriptionExpired(TransportError):
    """
    推送服务返回 404 / 410：订阅已失效。

    dispatcher 捕获后删除对应的 PushSubscription 记录。
    """

    code = 'SUBSCRIPTION_EXPIRED'
    http_status = 410
