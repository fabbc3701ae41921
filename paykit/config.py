"""支付配置"""
import os
import sys
from enum import Enum
from functools import lru_cache
from typing import ClassVar

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

WECHAT_API_BASE = "https://api.mch.weixin.qq.com"
WECHAT_SANDBOX_BASE = "https://api.mch.weixin.qq.com/sandboxnew"
ALIPAY_GATEWAY = "https://openapi.alipay.com/gateway.do"
ALIPAY_SANDBOX_GATEWAY = "https://openapi.alipaydev.com/gateway.do"


def _running_tests() -> bool:
    return "pytest" in sys.modules


def _env_file() -> str | None:
    if _running_tests():
        return None
    return os.getenv("ENV_FILE") or ".env"


class Mode(str, Enum):
    NORMAL = "normal"
    SERVICE = "service"  # 服务商模式
    SANDBOX = "sandbox"


class WechatConfig(BaseSettings):
    """微信支付 API v3 配置"""
    mchid: str = ""
    serial_no: str = ""  # 商户 API 证书序列号
    private_key: str = Field(default="", repr=False)  # PEM 文本或文件路径
    api_v3_key: str = Field(default="", repr=False)
    appid: str | None = None  # 主商户 appid（服务号）
    appid_mp: str | None = None
    appid_mini: str | None = None
    appid_app: str | None = None
    sub_mchid: str | None = None
    sub_appid: str | None = None
    notify_url: str | None = None

    # 微信支付公钥模式：公钥 ID 形如 PUB_KEY_ID_xxx
    platform_public_key_id: str | None = None
    platform_public_key: str | None = Field(default=None, repr=False)

    base_url: str = WECHAT_API_BASE
    certificates_path: str = "/v3/certificates"
    timeout_seconds: float = 10.0
    max_retries: int = 3

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="WECHATPAY_",
        env_file=_env_file(),
        extra="ignore",
        frozen=True,
    )

    @field_validator("mchid", "serial_no", "api_v3_key", "base_url", "certificates_path", mode="before")
    @classmethod
    def _strip(cls, value: object):
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("api_v3_key")
    @classmethod
    def _check_api_v3_key(cls, value: str) -> str:
        if value and len(value.encode("utf-8")) != 32:
            raise ValueError("WECHATPAY_API_V3_KEY must be 32 bytes")
        return value

    @field_validator("max_retries")
    @classmethod
    def _check_max_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError("WECHATPAY_MAX_RETRIES must be >= 1")
        return value

    def missing_fields(self) -> list[str]:
        required = {
            "mchid": self.mchid,
            "serial_no": self.serial_no,
            "private_key": self.private_key,
            "api_v3_key": self.api_v3_key,
        }
        return [k for k, v in required.items() if not str(v or "").strip()]


class AlipayConfig(BaseSettings):
    """支付宝开放平台配置"""
    app_id: str = ""
    gateway_url: str = ALIPAY_GATEWAY
    private_key: str = Field(default="", repr=False)
    alipay_public_key: str | None = Field(default=None, repr=False)
    charset: str = "utf-8"
    sign_type: str = "RSA2"

    # 公钥证书模式
    app_cert_path: str | None = None
    alipay_root_cert_path: str | None = None
    alipay_cert_path: str | None = None

    # 服务商模式
    app_auth_token: str | None = None
    sys_service_provider_id: str | None = None

    notify_url: str | None = None
    return_url: str | None = None
    timeout_seconds: float = 10.0

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="ALIPAY_",
        env_file=_env_file(),
        extra="ignore",
        frozen=True,
    )

    @field_validator("app_id", "gateway_url", "charset", mode="before")
    @classmethod
    def _strip(cls, value: object):
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("sign_type", mode="before")
    @classmethod
    def _check_sign_type(cls, value: object):
        s = str(value or "RSA2").strip().upper()
        if s != "RSA2":
            raise ValueError("ALIPAY_SIGN_TYPE only supports RSA2")
        return s

    def cert_mode(self) -> bool:
        return bool(self.app_cert_path and self.alipay_root_cert_path)

    def missing_fields(self) -> list[str]:
        out = [k for k, v in {"app_id": self.app_id, "private_key": self.private_key}.items() if not v.strip()]
        if not (self.alipay_public_key or self.alipay_cert_path):
            out.append("alipay_public_key")
        return out


class PayConfig(BaseSettings):
    mode: Mode = Mode.NORMAL
    wechat: WechatConfig | None = None
    alipay: AlipayConfig | None = None

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="PAY_",
        env_file=_env_file(),
        extra="ignore",
        frozen=True,
    )

    @field_validator("mode", mode="before")
    @classmethod
    def _parse_mode(cls, value: object):
        if isinstance(value, str):
            return value.strip().lower() or Mode.NORMAL.value
        return value


@lru_cache()
def get_settings() -> PayConfig:
    """从环境变量加载配置；测试中通过 get_settings.cache_clear() 重置"""
    wechat = WechatConfig()
    alipay = AlipayConfig()
    return PayConfig(
        wechat=wechat if wechat.mchid else None,
        alipay=alipay if alipay.app_id else None,
    )
