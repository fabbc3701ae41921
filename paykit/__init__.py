"""微信支付 / 支付宝 网关 SDK"""
import logging

from .client import Pay
from .config import AlipayConfig, Mode, PayConfig, WechatConfig, get_settings
from .errors import (
    CertificateNotFound,
    ConfigError,
    CryptoError,
    GatewayRejected,
    MalformedResponse,
    NotifyRejected,
    PayError,
    SignatureInvalid,
    TradeStatusNotSuccess,
    TransportError,
)

__all__ = [
    "Pay",
    "PayConfig",
    "WechatConfig",
    "AlipayConfig",
    "Mode",
    "get_settings",
    "PayError",
    "ConfigError",
    "CryptoError",
    "TransportError",
    "MalformedResponse",
    "GatewayRejected",
    "CertificateNotFound",
    "NotifyRejected",
    "SignatureInvalid",
    "TradeStatusNotSuccess",
]

# 输出由应用决定，见 paykit.utils.logging_config.setup_logging
logging.getLogger(__name__).addHandler(logging.NullHandler())
