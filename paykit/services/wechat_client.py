"""微信支付 API v3 客户端"""
from __future__ import annotations

import itertools
import json
import logging
import time
from typing import Any, cast
from urllib.parse import quote

import httpx

from ..config import WECHAT_SANDBOX_BASE, Mode, WechatConfig
from ..errors import ConfigError, GatewayRejected, MalformedResponse, TransportError
from ..schemas.wechat import WechatMicropayOrder, WechatOrder, WechatRefund, WechatTransferBatch
from ..utils.canonical import build_jsapi_pay_message, url_path_with_query
from ..utils.logging_config import gateway_logger
from ..utils.retry import retry_async
from ..utils.rsa_keys import load_rsa_private_key, rsa_sign_sha256
from .wechat_auth import USER_AGENT, build_authorization, gen_nonce, now_ts
from .wechat_certs import PlatformCertificateStore
from .wechat_notify import WechatNotify

logger = logging.getLogger(__name__)

PROVIDER = "wechat"


class WechatClient:
    def __init__(
        self,
        cfg: WechatConfig,
        mode: Mode = Mode.NORMAL,
        *,
        certs: PlatformCertificateStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        missing = cfg.missing_fields()
        if missing:
            raise ConfigError(f"wechat config missing: {','.join(missing)}")
        self.cfg = cfg
        self.mode = mode
        self.base_url = WECHAT_SANDBOX_BASE if mode == Mode.SANDBOX else cfg.base_url.rstrip("/")
        self._private_key = load_rsa_private_key(cfg.private_key)
        self._transport = transport
        self.certs = certs or PlatformCertificateStore(cfg, base_url=self.base_url, transport=transport)
        self._notify = WechatNotify(cfg, self.certs)

    @property
    def service_mode(self) -> bool:
        return self.mode == Mode.SERVICE

    @property
    def notify(self) -> WechatNotify:
        return self._notify

    def endpoint(self, path: str) -> str:
        return f"{self.base_url}{path}"

    # ============ 签名请求 ============

    async def _send_once(self, method: str, url: str, body_str: str, attempt: int = 1) -> dict[str, Any]:
        authorization = build_authorization(
            mchid=self.cfg.mchid,
            serial_no=self.cfg.serial_no,
            private_key=self._private_key,
            method=method,
            url=url,
            body=body_str,
        )
        headers = {
            "Authorization": authorization,
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        if method != "GET":
            headers["Content-Type"] = "application/json"

        path = url_path_with_query(url)
        gateway_logger.log_request(PROVIDER, method, path, attempt=attempt)
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.cfg.timeout_seconds, transport=self._transport) as client:
                if method == "GET":
                    res = await client.get(url, headers=headers)
                else:
                    res = await client.request(method, url, headers=headers, content=body_str.encode("utf-8"))
        except httpx.HTTPError as e:
            gateway_logger.log_error(PROVIDER, method, path, str(e))
            raise TransportError(f"HTTP request failed: {e}") from e
        gateway_logger.log_response(PROVIDER, method, path, res.status_code, (time.perf_counter() - started) * 1000)

        if res.status_code >= 500:
            raise TransportError(f"HTTP {res.status_code} - {res.text[:200]}", status_code=res.status_code)
        if res.status_code == 204 or not res.content:
            if res.status_code >= 400:
                raise GatewayRejected("HTTP_ERROR", f"HTTP {res.status_code}", status_code=res.status_code)
            return {}
        try:
            data_raw: object = res.json()
        except ValueError as e:
            raise MalformedResponse(f"response is not json: {res.text[:200]}") from e
        if res.status_code >= 400:
            raise GatewayRejected.from_wechat_response(data_raw, status_code=res.status_code)
        if not isinstance(data_raw, dict):
            raise MalformedResponse("response must be a json object")
        return cast(dict[str, Any], data_raw)

    async def request(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        method = method.upper()
        if method not in {"GET", "POST", "PUT", "PATCH", "DELETE"}:
            raise ValueError(f"unsupported method: {method}")
        body_str = ""
        if method != "GET" and body is not None:
            body_str = json.dumps(body, ensure_ascii=False, separators=(",", ":"))
        url = self.endpoint(path)

        attempt_no = itertools.count(1)

        async def _op() -> dict[str, Any]:
            return await self._send_once(method, url, body_str, attempt=next(attempt_no))

        return await retry_async(self.cfg.max_retries, _op)

    # ============ 下单 ============

    def _identity(self, appid: str | None) -> tuple[dict[str, str], str, str]:
        """返回 (身份字段, 路径前缀, payer 字段名)"""
        if not self.service_mode:
            if not appid:
                raise ConfigError("wechat appid not configured")
            return {"appid": appid, "mchid": self.cfg.mchid}, "/v3/pay/transactions", "openid"

        if not self.cfg.sub_mchid:
            raise ConfigError("wechat sub_mchid required in service mode")
        sp_appid = self.cfg.appid or appid
        if not sp_appid:
            raise ConfigError("wechat sp_appid not configured")
        identity = {"sp_appid": sp_appid, "sp_mchid": self.cfg.mchid, "sub_mchid": self.cfg.sub_mchid}
        payer_key = "sp_openid"
        if self.cfg.sub_appid:
            identity["sub_appid"] = self.cfg.sub_appid
            payer_key = "sub_openid"
        return identity, "/v3/pay/partner/transactions", payer_key

    async def _create(self, product: str, order: WechatOrder, appid: str | None) -> tuple[dict[str, Any], str]:
        identity, prefix, payer_key = self._identity(appid)
        body = order.to_body(identity, notify_url=self.cfg.notify_url, payer_key=payer_key)
        resp = await self.request("POST", f"{prefix}/{product}", body)
        client_appid = identity.get("sub_appid") or identity.get("appid") or identity["sp_appid"]
        return resp, client_appid

    def _jsapi_pay_params(self, appid: str, prepay_id: str) -> dict[str, str]:
        time_stamp = now_ts()
        nonce_str = gen_nonce()
        package = f"prepay_id={prepay_id}"
        pay_sign = rsa_sign_sha256(self._private_key, build_jsapi_pay_message(appid, time_stamp, nonce_str, package))
        return {
            "appId": appid,
            "timeStamp": time_stamp,
            "nonceStr": nonce_str,
            "package": package,
            "signType": "RSA",
            "paySign": pay_sign,
        }

    def _prepay_id(self, resp: dict[str, Any]) -> str:
        prepay_id = str(resp.get("prepay_id") or "").strip()
        if not prepay_id:
            raise MalformedResponse("response missing prepay_id")
        return prepay_id

    async def jsapi(self, order: WechatOrder) -> dict[str, str]:
        """公众号支付：返回前端 WeixinJSBridge 调起参数"""
        resp, appid = await self._create("jsapi", order, self.cfg.appid_mp or self.cfg.appid)
        return self._jsapi_pay_params(appid, self._prepay_id(resp))

    async def mini(self, order: WechatOrder) -> dict[str, str]:
        """小程序支付：返回 wx.requestPayment 参数"""
        resp, appid = await self._create("jsapi", order, self.cfg.appid_mini)
        return self._jsapi_pay_params(appid, self._prepay_id(resp))

    async def app(self, order: WechatOrder) -> dict[str, str]:
        resp, appid = await self._create("app", order, self.cfg.appid_app)
        prepay_id = self._prepay_id(resp)
        timestamp = now_ts()
        nonce_str = gen_nonce()
        sign = rsa_sign_sha256(self._private_key, build_jsapi_pay_message(appid, timestamp, nonce_str, prepay_id))
        return {
            "appid": appid,
            "partnerid": self.cfg.sub_mchid if self.service_mode and self.cfg.sub_mchid else self.cfg.mchid,
            "prepayid": prepay_id,
            "package": "Sign=WXPay",
            "noncestr": nonce_str,
            "timestamp": timestamp,
            "sign": sign,
        }

    async def h5(self, order: WechatOrder) -> dict[str, Any]:
        resp, _ = await self._create("h5", order, self.cfg.appid or self.cfg.appid_mp)
        return resp

    async def native(self, order: WechatOrder) -> dict[str, Any]:
        """扫码支付：返回 code_url"""
        resp, _ = await self._create("native", order, self.cfg.appid or self.cfg.appid_mp)
        return resp

    async def micropay(self, order: WechatMicropayOrder) -> dict[str, Any]:
        """付款码支付"""
        identity, _, _ = self._identity(self.cfg.appid or self.cfg.appid_mp)
        body: dict[str, Any] = dict(identity)
        body.update(
            {
                "description": order.description,
                "out_trade_no": order.out_trade_no,
                "auth_code": order.auth_code,
                "amount": order.amount.model_dump(),
            }
        )
        if order.scene_info is not None:
            body["scene_info"] = order.scene_info
        body.update(order.extra)
        return await self.request("POST", "/v3/pay/partner/transactions/micropay", body)

    # ============ 查询 / 关单 / 退款 / 转账 ============

    async def query_order(self, out_trade_no: str) -> dict[str, Any]:
        no = quote(out_trade_no, safe="")
        if self.service_mode:
            path = f"/v3/pay/partner/transactions/out-trade-no/{no}?sp_mchid={self.cfg.mchid}&sub_mchid={self.cfg.sub_mchid or ''}"
        else:
            path = f"/v3/pay/transactions/out-trade-no/{no}?mchid={self.cfg.mchid}"
        return await self.request("GET", path)

    async def close_order(self, out_trade_no: str) -> None:
        no = quote(out_trade_no, safe="")
        if self.service_mode:
            body = {"sp_mchid": self.cfg.mchid, "sub_mchid": self.cfg.sub_mchid or ""}
            _ = await self.request("POST", f"/v3/pay/partner/transactions/out-trade-no/{no}/close", body)
        else:
            _ = await self.request("POST", f"/v3/pay/transactions/out-trade-no/{no}/close", {"mchid": self.cfg.mchid})

    async def refund(self, refund: WechatRefund) -> dict[str, Any]:
        body: dict[str, Any] = refund.model_dump(exclude_none=True, exclude={"extra"})
        if self.service_mode and self.cfg.sub_mchid:
            body["sub_mchid"] = self.cfg.sub_mchid
        body.update(refund.extra)
        return await self.request("POST", "/v3/refund/domestic/refunds", body)

    async def transfer(self, batch: WechatTransferBatch) -> dict[str, Any]:
        appid = self.cfg.appid or self.cfg.appid_mp or ""
        return await self.request("POST", "/v3/transfer/batches", batch.to_body(appid))

    async def refresh_platform_certs(self) -> int:
        return await self.certs.refresh()
