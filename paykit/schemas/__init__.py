"""Pydantic模式"""
from .alipay import AlipayNotifyData, AlipayOrder, AlipayRefund
from .wechat import (
    WechatAmount,
    WechatMicropayOrder,
    WechatOrder,
    WechatRefund,
    WechatRefundAmount,
    WechatTransferBatch,
    WechatTransferDetail,
)

__all__ = [
    "AlipayNotifyData",
    "AlipayOrder",
    "AlipayRefund",
    "WechatAmount",
    "WechatMicropayOrder",
    "WechatOrder",
    "WechatRefund",
    "WechatRefundAmount",
    "WechatTransferBatch",
    "WechatTransferDetail",
]
