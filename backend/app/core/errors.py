"""
订单流水线错误类型

每个错误带机器可读的 code 与对应 HTTP 状态码，由 main.py 的异常处理器统一渲染。
"""
from typing import Optional


class OrderPipelineError(Exception):
    """订单流水线错误基类"""
    code = "order_pipeline_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class OrderNotFound(OrderPipelineError):
    """订单不存在"""
    code = "order_not_found"
    status_code = 404

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"订单不存在: {order_id}")


class InvalidTransition(OrderPipelineError):
    """非法的状态迁移"""
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, target: str, reason: Optional[str] = None):
        self.current = current
        self.target = target
        msg = f"订单状态不能从 {current} 变更为 {target}"
        if reason:
            msg = f"{msg}（{reason}）"
        super().__init__(msg)


class PaymentRequired(OrderPipelineError):
    """未经支付确认试图推进待支付订单"""
    code = "payment_required"
    status_code = 402

    def __init__(self, order_id: str, target: str):
        self.order_id = order_id
        self.target = target
        super().__init__(f"订单 {order_id} 尚未完成支付，不能变更为 {target}")


class InvalidState(OrderPipelineError):
    """当前状态下不允许该操作"""
    code = "invalid_state"
    status_code = 409


class AlreadyConfirmed(OrderPipelineError):
    """订单已确认收货"""
    code = "already_confirmed"
    status_code = 409

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"订单 {order_id} 已确认收货")


class Conflict(OrderPipelineError):
    """并发写冲突：订单已被其他请求修改"""
    code = "conflict"
    status_code = 409

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"订单 {order_id} 已被其他请求修改，请刷新后重试")


class PromoInvalid(OrderPipelineError):
    """优惠码无效：not_found / expired / empty"""
    code = "promo_invalid"
    status_code = 400

    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    EMPTY = "empty"

    _MESSAGES = {
        NOT_FOUND: "优惠码不存在或已停用",
        EXPIRED: "优惠码已过期",
        EMPTY: "请输入优惠码",
    }

    def __init__(self, reason: str, code_value: str = ""):
        self.reason = reason
        self.code_value = code_value
        super().__init__(self._MESSAGES.get(reason, "优惠码无效"))


class DistanceUnavailable(OrderPipelineError):
    """无法获取距离（坐标缺失或位置服务不可用），调用方回退默认运费，不对用户暴露"""
    code = "distance_unavailable"
    status_code = 503


class PaymentGatewayError(OrderPipelineError):
    """支付网关调用失败"""
    code = "payment_gateway_error"
    status_code = 502
