"""支付宝开放平台客户端"""
from __future__ import annotations

import html
import itertools
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, cast
from urllib.parse import urlencode, urlsplit

import httpx

from ..config import ALIPAY_SANDBOX_GATEWAY, AlipayConfig, Mode
from ..errors import ConfigError, GatewayRejected, MalformedResponse, TransportError
from ..schemas.alipay import AlipayOrder, AlipayRefund
from ..utils.canonical import build_sort_sign_string
from ..utils.cert_sn import get_cert_sn, get_public_key_with_path, get_root_cert_sn
from ..utils.logging_config import gateway_logger
from ..utils.retry import retry_async
from ..utils.rsa_keys import load_rsa_private_key, rsa_sign_sha256
from .alipay_notify import AlipayNotify

logger = logging.getLogger(__name__)

PROVIDER = "alipay"
SUCCESS_CODE = "10000"
MAX_RETRIES = 3
_CST = timezone(timedelta(hours=8))


def _dumps(obj: object) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


class AlipayClient:
    def __init__(
        self,
        cfg: AlipayConfig,
        mode: Mode = Mode.NORMAL,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        missing = cfg.missing_fields()
        if missing:
            raise ConfigError(f"alipay config missing: {','.join(missing)}")
        self.cfg = cfg
        self.mode = mode
        self.gateway = ALIPAY_SANDBOX_GATEWAY if mode == Mode.SANDBOX else cfg.gateway_url
        self._transport = transport
        self._private_key = load_rsa_private_key(cfg.private_key)

        # 公钥证书模式：两个 SN 在构造时计算，失败直接报错
        self.app_cert_sn: str | None = None
        self.alipay_root_cert_sn: str | None = None
        if cfg.cert_mode():
            self.app_cert_sn = get_cert_sn(cast(str, cfg.app_cert_path))
            self.alipay_root_cert_sn = get_root_cert_sn(cast(str, cfg.alipay_root_cert_path))

        public_key = cfg.alipay_public_key or get_public_key_with_path(cast(str, cfg.alipay_cert_path))
        self._notify = AlipayNotify(cfg, public_key)

    @property
    def service_mode(self) -> bool:
        return self.mode == Mode.SERVICE

    @property
    def notify(self) -> AlipayNotify:
        return self._notify

    def _extend_params(self) -> dict[str, Any] | None:
        if self.service_mode and self.cfg.sys_service_provider_id:
            return {"sys_service_provider_id": self.cfg.sys_service_provider_id}
        return None

    def build_common_params(
        self,
        method: str,
        *,
        notify_url: str | None = None,
        return_url: str | None = None,
    ) -> dict[str, str]:
        params: dict[str, str] = {
            "app_id": self.cfg.app_id,
            "method": method,
            "format": "JSON",
            "charset": self.cfg.charset,
            "sign_type": self.cfg.sign_type,
            "timestamp": datetime.now(_CST).strftime("%Y-%m-%d %H:%M:%S"),
            "version": "1.0",
        }
        if self.app_cert_sn and self.alipay_root_cert_sn:
            params["app_cert_sn"] = self.app_cert_sn
            params["alipay_root_cert_sn"] = self.alipay_root_cert_sn
        if self.service_mode and self.cfg.app_auth_token:
            params["app_auth_token"] = self.cfg.app_auth_token

        notify = notify_url or self.cfg.notify_url
        if notify:
            params["notify_url"] = notify
        ret = return_url or self.cfg.return_url
        if ret:
            params["return_url"] = ret
        return params

    def sign_params(self, params: dict[str, str]) -> dict[str, str]:
        signed = dict(params)
        signed.pop("sign", None)
        signed["sign"] = rsa_sign_sha256(self._private_key, build_sort_sign_string(signed))
        return signed

    def _order_params(self, method: str, order: AlipayOrder, product_code: str | None) -> dict[str, str]:
        params = self.build_common_params(method, notify_url=order.notify_url, return_url=order.return_url)
        biz = order.to_biz_content(default_product_code=product_code, extend_params=self._extend_params())
        params["biz_content"] = _dumps(biz)
        return self.sign_params(params)

    # ============ 前端跳转类 ============

    def app(self, order: AlipayOrder) -> dict[str, str]:
        """APP 支付：返回客户端 SDK 使用的 order_string"""
        signed = self._order_params("alipay.trade.app.pay", order, "QUICK_MSECURITY_PAY")
        return {"order_string": urlencode(signed)}

    def h5(self, order: AlipayOrder) -> dict[str, str]:
        """手机网站支付：返回跳转链接"""
        signed = self._order_params("alipay.trade.wap.pay", order, "QUICK_WAP_WAY")
        return {"pay_url": f"{self.gateway}?{urlencode(signed)}"}

    def page(self, order: AlipayOrder) -> dict[str, str]:
        """电脑网站支付：返回自动提交的表单 HTML"""
        signed = self._order_params("alipay.trade.page.pay", order, "FAST_INSTANT_TRADE_PAY")
        inputs = "\n".join(
            f'<input type="hidden" name="{html.escape(k, quote=True)}" value="{html.escape(v, quote=True)}"/>'
            for k, v in signed.items()
        )
        action = html.escape(f"{self.gateway}?charset={self.cfg.charset}", quote=True)
        form_html = (
            f'<form id="alipaysubmit" name="alipaysubmit" action="{action}" method="POST">\n'
            f"{inputs}\n"
            '<input type="submit" value="ok" style="display:none"></form>\n'
            "<script>document.forms['alipaysubmit'].submit();</script>"
        )
        return {"form_html": form_html}

    # ============ 服务端调用 ============

    async def _send_once(self, method: str, signed: dict[str, str], attempt: int = 1) -> dict[str, Any]:
        path = urlsplit(self.gateway).path or "/"
        gateway_logger.log_request(PROVIDER, "POST", f"{path} {method}", attempt=attempt)
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.cfg.timeout_seconds, transport=self._transport) as client:
                res = await client.post(
                    self.gateway,
                    params={"charset": self.cfg.charset},
                    data=signed,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            gateway_logger.log_error(PROVIDER, "POST", f"{path} {method}", str(e))
            raise TransportError(f"HTTP request failed: {e}") from e
        gateway_logger.log_response(PROVIDER, "POST", f"{path} {method}", res.status_code, (time.perf_counter() - started) * 1000)

        if res.status_code >= 500:
            raise TransportError(f"HTTP {res.status_code}", status_code=res.status_code)
        if res.status_code >= 400:
            raise GatewayRejected("HTTP_ERROR", f"HTTP {res.status_code}", status_code=res.status_code)
        try:
            data_raw: object = res.json()
        except ValueError as e:
            raise MalformedResponse(f"response is not json: {res.text[:200]}") from e
        if not isinstance(data_raw, dict):
            raise MalformedResponse("response must be a json object")
        return cast(dict[str, Any], data_raw)

    async def execute(
        self,
        method: str,
        biz_content: dict[str, Any],
        *,
        notify_url: str | None = None,
    ) -> dict[str, Any]:
        params = self.build_common_params(method, notify_url=notify_url)
        params["biz_content"] = _dumps(biz_content)
        signed = self.sign_params(params)

        attempt_no = itertools.count(1)

        async def _op() -> dict[str, Any]:
            return await self._send_once(method, signed, attempt=next(attempt_no))

        data = await retry_async(MAX_RETRIES, _op)

        err = data.get("error_response")
        if err is not None:
            raise GatewayRejected.from_alipay_response(err)
        response_key = method.replace(".", "_") + "_response"
        result = data.get(response_key)
        if not isinstance(result, dict):
            raise MalformedResponse(f"invalid alipay response: missing {response_key}")
        result_dict = cast(dict[str, Any], result)
        if str(result_dict.get("code") or "") != SUCCESS_CODE:
            raise GatewayRejected.from_alipay_response(result_dict)
        return result_dict

    async def scan(self, order: AlipayOrder) -> dict[str, Any]:
        """当面付扫码：返回 qr_code"""
        biz = order.to_biz_content(extend_params=self._extend_params())
        return await self.execute("alipay.trade.precreate", biz, notify_url=order.notify_url)

    async def mini_program(self, order: AlipayOrder) -> dict[str, str]:
        """小程序支付：创建交易后由前端拉起"""
        biz = order.to_biz_content(extend_params=self._extend_params())
        result = await self.execute("alipay.trade.create", biz, notify_url=order.notify_url)
        trade_no = str(result.get("trade_no") or "")
        if not trade_no:
            raise MalformedResponse("alipay.trade.create response missing trade_no")
        return {"trade_no": trade_no, "out_trade_no": order.out_trade_no}

    async def query(self, *, out_trade_no: str | None = None, trade_no: str | None = None) -> dict[str, Any]:
        if not (out_trade_no or trade_no):
            raise ValueError("out_trade_no or trade_no is required")
        biz = {k: v for k, v in {"out_trade_no": out_trade_no, "trade_no": trade_no}.items() if v}
        return await self.execute("alipay.trade.query", biz)

    async def close(self, *, out_trade_no: str) -> dict[str, Any]:
        return await self.execute("alipay.trade.close", {"out_trade_no": out_trade_no})

    async def refund(self, refund: AlipayRefund) -> dict[str, Any]:
        return await self.execute("alipay.trade.refund", refund.to_biz_content())
