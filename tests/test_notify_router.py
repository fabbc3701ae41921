import base64
import json

import httpx
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from paykit.client import Pay
from paykit.config import AlipayConfig, PayConfig, WechatConfig
from paykit.routers import create_notify_router
from paykit.services.wechat_certs import CertificateEntry
from paykit.utils.aead import aes_gcm_encrypt
from paykit.utils.canonical import build_sort_sign_string
from paykit.utils.rsa_keys import rsa_sign_sha256

API_V3_KEY = "0123456789abcdef0123456789abcdef"
SERIAL = "PLATSERIAL"
APP_ID = "2021000000000001"


def _pay(merchant_keys, platform_keys, *, alipay: bool = True) -> Pay:
    refresh_failing = httpx.MockTransport(lambda request: httpx.Response(500, text="down"))
    config = PayConfig(
        wechat=WechatConfig(
            mchid="1900000001",
            serial_no="MCHSERIAL",
            private_key=merchant_keys.private_pem,
            api_v3_key=API_V3_KEY,
            max_retries=1,
        ),
        alipay=AlipayConfig(app_id=APP_ID, private_key=merchant_keys.private_pem, alipay_public_key=platform_keys.public_pem)
        if alipay
        else None,
    )
    pay = Pay(config, transport=refresh_failing)
    pay.wechat().certs.replace({SERIAL: CertificateEntry(SERIAL, platform_keys.public_pem)})
    return pay


def _app(pay: Pay, **handlers) -> FastAPI:
    app = FastAPI()
    app.include_router(create_notify_router(pay, **handlers), prefix="/pay")
    return app


def _wechat_request(key, plain: dict, serial: str = SERIAL) -> tuple[dict, bytes]:
    nonce = "0123456789ab"
    body = json.dumps(
        {
            "event_type": "TRANSACTION.SUCCESS",
            "resource": {
                "ciphertext": aes_gcm_encrypt(API_V3_KEY, "transaction", nonce, json.dumps(plain)),
                "nonce": nonce,
                "associated_data": "transaction",
            },
        }
    ).encode("utf-8")
    ts, header_nonce = "1700000000", "n0nce"
    sig = key.sign(f"{ts}\n{header_nonce}\n".encode("utf-8") + body + b"\n", padding.PKCS1v15(), hashes.SHA256())
    headers = {
        "Wechatpay-Timestamp": ts,
        "Wechatpay-Nonce": header_nonce,
        "Wechatpay-Signature": base64.b64encode(sig).decode("utf-8"),
        "Wechatpay-Serial": serial,
        "Wechatpay-Signature-Type": "WECHATPAY2-SHA256-RSA2048",
        "Content-Type": "application/json",
    }
    return headers, body


def _alipay_form(key, **overrides) -> dict:
    params = {
        "app_id": APP_ID,
        "trade_no": "2026010122001419",
        "out_trade_no": "A20260101",
        "trade_status": "TRADE_SUCCESS",
        "total_amount": "0.10",
        "sign_type": "RSA2",
    }
    params.update(overrides)
    params["sign"] = rsa_sign_sha256(key, build_sort_sign_string(params, exclude=("sign", "sign_type")))
    return params


async def _post(app: FastAPI, url: str, **kwargs) -> httpx.Response:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        return await ac.post(url, **kwargs)


@pytest.mark.asyncio
async def test_wechat_notify_success_calls_handler(merchant_keys, platform_keys) -> None:
    received: list[dict] = []

    async def _on_wechat(resource: dict) -> None:
        received.append(resource)

    app = _app(_pay(merchant_keys, platform_keys), on_wechat=_on_wechat)
    headers, body = _wechat_request(platform_keys.key, {"out_trade_no": "T1", "trade_state": "SUCCESS"})
    res = await _post(app, "/pay/wechat/notify", content=body, headers=headers)

    assert res.status_code == 200
    assert res.text == "success"
    assert received == [{"out_trade_no": "T1", "trade_state": "SUCCESS"}]


@pytest.mark.asyncio
async def test_wechat_notify_bad_signature_is_400(merchant_keys, platform_keys, other_keys) -> None:
    received: list[dict] = []
    app = _app(_pay(merchant_keys, platform_keys), on_wechat=received.append)
    headers, body = _wechat_request(other_keys.key, {"out_trade_no": "T1"})
    res = await _post(app, "/pay/wechat/notify", content=body, headers=headers)

    assert res.status_code == 400
    assert res.text == "failure"
    assert received == []


@pytest.mark.asyncio
async def test_wechat_notify_refresh_failure_is_500(merchant_keys, platform_keys) -> None:
    app = _app(_pay(merchant_keys, platform_keys))
    headers, body = _wechat_request(platform_keys.key, {"out_trade_no": "T1"}, serial="UNKNOWN")
    res = await _post(app, "/pay/wechat/notify", content=body, headers=headers)

    assert res.status_code == 500
    assert res.text == "failure"


@pytest.mark.asyncio
async def test_wechat_notify_handler_error_is_500(merchant_keys, platform_keys) -> None:
    def _boom(resource: dict) -> None:
        raise RuntimeError("db down")

    app = _app(_pay(merchant_keys, platform_keys), on_wechat=_boom)
    headers, body = _wechat_request(platform_keys.key, {"out_trade_no": "T1"})
    res = await _post(app, "/pay/wechat/notify", content=body, headers=headers)
    assert res.status_code == 500
    assert res.text == "failure"


@pytest.mark.asyncio
async def test_alipay_notify_success(merchant_keys, platform_keys) -> None:
    received = []

    async def _on_alipay(data) -> None:
        received.append(data)

    app = _app(_pay(merchant_keys, platform_keys), on_alipay=_on_alipay)
    res = await _post(app, "/pay/alipay/notify", data=_alipay_form(platform_keys.key))

    assert res.status_code == 200
    assert res.text == "success"
    assert received[0].out_trade_no == "A20260101"


@pytest.mark.asyncio
async def test_alipay_notify_tampered_is_400(merchant_keys, platform_keys) -> None:
    form = _alipay_form(platform_keys.key)
    form["total_amount"] = "999.00"
    res = await _post(_app(_pay(merchant_keys, platform_keys)), "/pay/alipay/notify", data=form)
    assert res.status_code == 400
    assert res.text == "failure"


@pytest.mark.asyncio
async def test_alipay_notify_unpaid_status_is_not_success(merchant_keys, platform_keys) -> None:
    form = _alipay_form(platform_keys.key, trade_status="WAIT_BUYER_PAY")
    res = await _post(_app(_pay(merchant_keys, platform_keys)), "/pay/alipay/notify", data=form)
    assert res.status_code == 400
    assert res.text == "failure"


@pytest.mark.asyncio
async def test_alipay_not_configured_is_500(merchant_keys, platform_keys) -> None:
    app = _app(_pay(merchant_keys, platform_keys, alipay=False))
    res = await _post(app, "/pay/alipay/notify", data=_alipay_form(platform_keys.key))
    assert res.status_code == 500
    assert res.text == "failure"
