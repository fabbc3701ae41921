"""支付宝异步通知验签"""
from __future__ import annotations

import logging
from collections.abc import Mapping

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from ..config import AlipayConfig
from ..errors import NotifyRejected, SignatureInvalid, TradeStatusNotSuccess
from ..schemas.alipay import AlipayNotifyData
from ..utils.canonical import build_sort_sign_string
from ..utils.rsa_keys import load_rsa_public_key, rsa_verify_sha256

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"TRADE_SUCCESS", "TRADE_FINISHED"})
REQUIRED_FIELDS = ("app_id", "out_trade_no", "trade_no", "trade_status", "total_amount")
_MODEL_FIELDS = set(REQUIRED_FIELDS) | {"seller_id"}


class AlipayNotify:
    def __init__(self, cfg: AlipayConfig, alipay_public_key: str | RSAPublicKey) -> None:
        self._cfg = cfg
        self._public_key = load_rsa_public_key(alipay_public_key)

    def verify_signature(self, params: Mapping[str, str]) -> None:
        sign = str(params.get("sign") or "").strip()
        if not sign:
            raise NotifyRejected("missing sign")
        sign_type = str(params.get("sign_type") or "").strip().upper()
        if sign_type and sign_type != "RSA2":
            raise NotifyRejected(f"unsupported sign_type: {sign_type}")

        message = build_sort_sign_string(params, exclude=("sign", "sign_type"))
        if not rsa_verify_sha256(self._public_key, message, sign):
            raise SignatureInvalid("alipay notify invalid signature")

    def verify_notify(self, params: Mapping[str, str]) -> AlipayNotifyData:
        """验签并校验 app_id 与交易状态，返回通知数据"""
        self.verify_signature(params)

        missing = [k for k in REQUIRED_FIELDS if not str(params.get(k) or "").strip()]
        if missing:
            raise NotifyRejected(f"missing fields: {','.join(missing)}")
        if params["app_id"] != self._cfg.app_id:
            raise NotifyRejected("app_id mismatch")

        trade_status = params["trade_status"]
        if trade_status not in SUCCESS_STATUSES:
            logger.info("支付宝通知非成功状态 out_trade_no=%s status=%s", params["out_trade_no"], trade_status)
            raise TradeStatusNotSuccess(trade_status)

        return AlipayNotifyData(
            app_id=params["app_id"],
            out_trade_no=params["out_trade_no"],
            trade_no=params["trade_no"],
            trade_status=trade_status,
            total_amount=params["total_amount"],
            seller_id=params.get("seller_id") or None,
            others={k: v for k, v in params.items() if k not in _MODEL_FIELDS},
        )

    @staticmethod
    def success_response() -> str:
        return "success"
