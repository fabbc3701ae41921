"""微信支付请求模型"""
from typing import Any

from pydantic import BaseModel, Field, model_validator


class WechatAmount(BaseModel):
    total: int = Field(gt=0)  # 单位：分
    currency: str = "CNY"


class WechatOrder(BaseModel):
    description: str
    out_trade_no: str
    amount: WechatAmount
    notify_url: str | None = None
    payer_openid: str | None = None
    attach: str | None = None
    time_expire: str | None = None
    scene_info: dict[str, Any] | None = None
    # 网关特有的可选字段，原样合入请求体
    extra: dict[str, Any] = Field(default_factory=dict)

    def to_body(self, identity: dict[str, str], *, notify_url: str | None, payer_key: str = "openid") -> dict[str, Any]:
        body: dict[str, Any] = dict(identity)
        body["description"] = self.description
        body["out_trade_no"] = self.out_trade_no
        body["notify_url"] = self.notify_url or notify_url or ""
        body["amount"] = self.amount.model_dump()
        if self.payer_openid:
            body["payer"] = {payer_key: self.payer_openid}
        if self.attach is not None:
            body["attach"] = self.attach
        if self.time_expire is not None:
            body["time_expire"] = self.time_expire
        if self.scene_info is not None:
            body["scene_info"] = self.scene_info
        body.update(self.extra)
        return body


class WechatMicropayOrder(BaseModel):
    description: str
    out_trade_no: str
    auth_code: str
    amount: WechatAmount
    scene_info: dict[str, Any] | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class WechatRefundAmount(BaseModel):
    refund: int = Field(gt=0)
    total: int = Field(gt=0)
    currency: str = "CNY"


class WechatRefund(BaseModel):
    out_refund_no: str
    amount: WechatRefundAmount
    out_trade_no: str | None = None
    transaction_id: str | None = None
    reason: str | None = None
    notify_url: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_trade_ref(self):
        if not (self.out_trade_no or self.transaction_id):
            raise ValueError("out_trade_no or transaction_id is required")
        return self


class WechatTransferDetail(BaseModel):
    out_detail_no: str
    transfer_amount: int = Field(gt=0)
    transfer_remark: str
    openid: str
    user_name: str | None = None


class WechatTransferBatch(BaseModel):
    out_batch_no: str
    batch_name: str
    batch_remark: str
    transfer_detail_list: list[WechatTransferDetail]
    appid: str | None = None
    transfer_scene_id: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    def to_body(self, appid: str) -> dict[str, Any]:
        details = [d.model_dump(exclude_none=True) for d in self.transfer_detail_list]
        body: dict[str, Any] = {
            "appid": self.appid or appid,
            "out_batch_no": self.out_batch_no,
            "batch_name": self.batch_name,
            "batch_remark": self.batch_remark,
            "total_amount": sum(d.transfer_amount for d in self.transfer_detail_list),
            "total_num": len(details),
            "transfer_detail_list": details,
        }
        if self.transfer_scene_id:
            body["transfer_scene_id"] = self.transfer_scene_id
        body.update(self.extra)
        return body
