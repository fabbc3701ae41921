"""支付客户端容器"""
from __future__ import annotations

import logging

import httpx

from .config import PayConfig
from .errors import ConfigError
from .services.alipay_client import AlipayClient
from .services.wechat_client import WechatClient

logger = logging.getLogger(__name__)


class Pay:
    """按配置构建并缓存各网关客户端，由调用方显式持有"""

    def __init__(self, config: PayConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self._transport = transport
        self._wechat: WechatClient | None = None
        self._alipay: AlipayClient | None = None

    def wechat(self) -> WechatClient:
        if self._wechat is None:
            if self.config.wechat is None:
                raise ConfigError("wechat gateway not configured")
            self._wechat = WechatClient(self.config.wechat, self.config.mode, transport=self._transport)
            logger.info("微信支付客户端已初始化 mode=%s", self.config.mode.value)
        return self._wechat

    def alipay(self) -> AlipayClient:
        if self._alipay is None:
            if self.config.alipay is None:
                raise ConfigError("alipay gateway not configured")
            self._alipay = AlipayClient(self.config.alipay, self.config.mode, transport=self._transport)
            logger.info("支付宝客户端已初始化 mode=%s", self.config.mode.value)
        return self._alipay
