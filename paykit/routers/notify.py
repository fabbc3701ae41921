"""支付回调路由"""
import inspect
import json
import logging
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Request, Response

from ..client import Pay
from ..errors import (
    CertificateNotFound,
    ConfigError,
    CryptoError,
    MalformedResponse,
    NotifyRejected,
    PayError,
    TransportError,
)
from ..schemas.alipay import AlipayNotifyData
from ..utils.logging_config import mask_payload

logger = logging.getLogger(__name__)

WechatHandler = Callable[[dict[str, Any]], object]
AlipayHandler = Callable[[AlipayNotifyData], object]

# 验签/报文类错误 -> 400；配置/证书刷新类错误 -> 500
_REJECT_ERRORS = (NotifyRejected, CertificateNotFound, CryptoError, MalformedResponse)


def _success() -> Response:
    return Response(content="success", status_code=200, media_type="text/plain")


def _failure(status_code: int) -> Response:
    return Response(content="failure", status_code=status_code, media_type="text/plain")


def _status_for(error: PayError) -> int:
    if isinstance(error, _REJECT_ERRORS):
        return 400
    return 500


async def _call(handler: Callable[[Any], object], arg: object) -> None:
    result = handler(arg)
    if inspect.isawaitable(result):
        _ = await result


def create_notify_router(
    pay: Pay,
    *,
    on_wechat: WechatHandler | None = None,
    on_alipay: AlipayHandler | None = None,
) -> APIRouter:
    router = APIRouter(tags=["支付回调"])

    @router.post("/wechat/notify", summary="微信支付回调（验签）")
    async def wechat_notify(request: Request):
        body = await request.body()
        logger.info("收到微信支付回调 payload=%s", mask_payload(body.decode("utf-8", errors="replace")))
        try:
            resource = await pay.wechat().notify.verify_and_decrypt(dict(request.headers), body)
        except (ConfigError, TransportError) as e:
            logger.error("微信支付回调处理失败: %s", e)
            return _failure(500)
        except PayError as e:
            logger.warning("微信支付回调验签失败: %s", e)
            return _failure(_status_for(e))

        if on_wechat is not None:
            try:
                await _call(on_wechat, resource)
            except Exception:
                logger.exception("微信支付回调业务处理失败")
                return _failure(500)
        return _success()

    @router.post("/alipay/notify", summary="支付宝异步通知")
    async def alipay_notify(request: Request):
        form = await request.form()
        params = {str(k): str(v) for k, v in form.items()}
        logger.info("收到支付宝回调 payload=%s", mask_payload(json.dumps(params, ensure_ascii=False)))
        try:
            data = pay.alipay().notify.verify_notify(params)
        except ConfigError as e:
            logger.error("支付宝回调处理失败: %s", e)
            return _failure(500)
        except PayError as e:
            logger.warning("支付宝回调校验失败: %s", e)
            return _failure(_status_for(e))

        if on_alipay is not None:
            try:
                await _call(on_alipay, data)
            except Exception:
                logger.exception("支付宝回调业务处理失败 out_trade_no=%s", data.out_trade_no)
                return _failure(500)
        return _success()

    return router
