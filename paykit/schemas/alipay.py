"""支付宝请求与通知模型"""
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, model_validator


def _amount_str(value: Decimal) -> str:
    return str(value.quantize(Decimal("0.01")))


class AlipayOrder(BaseModel):
    out_trade_no: str
    total_amount: Decimal = Field(gt=0)  # 单位：元
    subject: str
    product_code: str | None = None
    body: str | None = None
    timeout_express: str | None = None
    notify_url: str | None = None
    return_url: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    def to_biz_content(self, *, default_product_code: str | None = None, extend_params: dict[str, Any] | None = None) -> dict[str, Any]:
        biz: dict[str, Any] = {
            "out_trade_no": self.out_trade_no,
            "total_amount": _amount_str(self.total_amount),
            "subject": self.subject,
        }
        product_code = self.product_code or default_product_code
        if product_code:
            biz["product_code"] = product_code
        if self.body is not None:
            biz["body"] = self.body
        if self.timeout_express is not None:
            biz["timeout_express"] = self.timeout_express
        biz.update(self.extra)
        if extend_params:
            merged = dict(biz.get("extend_params") or {})
            merged.update(extend_params)
            biz["extend_params"] = merged
        return biz


class AlipayRefund(BaseModel):
    refund_amount: Decimal = Field(gt=0)
    out_trade_no: str | None = None
    trade_no: str | None = None
    out_request_no: str | None = None
    refund_reason: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_trade_ref(self):
        if not (self.out_trade_no or self.trade_no):
            raise ValueError("out_trade_no or trade_no is required")
        return self

    def to_biz_content(self) -> dict[str, Any]:
        biz: dict[str, Any] = {"refund_amount": _amount_str(self.refund_amount)}
        for key in ("out_trade_no", "trade_no", "out_request_no", "refund_reason"):
            value = getattr(self, key)
            if value is not None:
                biz[key] = value
        biz.update(self.extra)
        return biz


class AlipayNotifyData(BaseModel):
    app_id: str
    out_trade_no: str
    trade_no: str
    trade_status: str
    total_amount: str
    seller_id: str | None = None
    others: dict[str, str] = Field(default_factory=dict)
