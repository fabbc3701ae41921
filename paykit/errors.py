"""支付错误类型"""
from __future__ import annotations

from typing import Any, cast


class PayError(Exception):
    kind: str = "pay_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = str(message)

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}" if self.message else self.kind


class ConfigError(PayError):
    kind = "config"


class CryptoError(PayError):
    kind = "crypto"


class TransportError(PayError):
    kind = "transport"

    def __init__(self, message: str = "", *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponse(PayError):
    kind = "malformed_response"


class GatewayRejected(PayError):
    kind = "gateway_rejected"

    def __init__(self, code: str, message: str, *, sub_code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(f"{code} - {message}")
        self.code = code
        self.gateway_message = message
        self.sub_code = sub_code
        self.status_code = status_code

    @classmethod
    def from_alipay_response(cls, response: object) -> "GatewayRejected":
        data = cast(dict[str, Any], response) if isinstance(response, dict) else {}
        code = str(data.get("code") or "UNKNOWN")
        msg = str(data.get("sub_msg") or data.get("msg") or "Unknown error")
        sub_code = str(data.get("sub_code") or "").strip() or None
        return cls(code, msg, sub_code=sub_code)

    @classmethod
    def from_wechat_response(cls, response: object, *, status_code: int | None = None) -> "GatewayRejected":
        data = cast(dict[str, Any], response) if isinstance(response, dict) else {}
        code = str(data.get("code") or "UNKNOWN")
        msg = str(data.get("message") or "Unknown error")
        return cls(code, msg, status_code=status_code)


class CertificateNotFound(PayError):
    kind = "certificate_not_found"

    def __init__(self, serial: str) -> None:
        super().__init__(f"platform cert {serial} not found after refresh")
        self.serial = serial


class NotifyRejected(PayError):
    kind = "notify_rejected"


class SignatureInvalid(NotifyRejected):
    kind = "signature_invalid"


class TradeStatusNotSuccess(NotifyRejected):
    kind = "trade_status_not_success"

    def __init__(self, trade_status: str) -> None:
        super().__init__(f"trade_status not success: {trade_status}")
        self.trade_status = trade_status
