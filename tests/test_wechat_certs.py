import base64
import json
import logging
import re

import httpx
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from paykit.config import WechatConfig
from paykit.errors import ConfigError, GatewayRejected, MalformedResponse, TransportError
from paykit.services.wechat_certs import (
    CertificateEntry,
    PlatformCertificateStore,
    load_snapshot_entries,
    parse_certificates_response,
)
from paykit.utils.aead import aes_gcm_encrypt

API_V3_KEY = "0123456789abcdef0123456789abcdef"


def _cfg(merchant_keys, **overrides) -> WechatConfig:
    values = {
        "mchid": "1900000001",
        "serial_no": "MCHSERIAL",
        "private_key": merchant_keys.private_pem,
        "api_v3_key": API_V3_KEY,
        "max_retries": 2,
    }
    values.update(overrides)
    return WechatConfig(**values)


def _encrypted_entry(serial: str, cert_pem: str, nonce: str = "abcdefghijkl") -> dict:
    return {
        "serial_no": serial,
        "effective_time": "2026-01-01T00:00:00+08:00",
        "expire_time": "2031-01-01T00:00:00+08:00",
        "encrypt_certificate": {
            "algorithm": "AEAD_AES_256_GCM",
            "nonce": nonce,
            "associated_data": "certificate",
            "ciphertext": aes_gcm_encrypt(API_V3_KEY, "certificate", nonce, cert_pem),
        },
    }


def test_parse_certificates_response_extracts_public_keys(platform_keys) -> None:
    data = {"data": [_encrypted_entry("PLAT1", platform_keys.cert_pem())]}
    certs = parse_certificates_response(data, API_V3_KEY)
    assert list(certs) == ["PLAT1"]
    assert certs["PLAT1"].public_key_pem == platform_keys.public_pem
    assert certs["PLAT1"].expire_time == "2031-01-01T00:00:00+08:00"


def test_parse_certificates_response_empty_list_is_valid() -> None:
    assert parse_certificates_response({"data": []}, API_V3_KEY) == {}


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {},
        {"data": "x"},
        {"data": ["x"]},
        {"data": [{"serial_no": "S"}]},
        {"data": [{"serial_no": "", "encrypt_certificate": {"nonce": "n", "ciphertext": "c"}}]},
        {"data": [{"serial_no": "S", "encrypt_certificate": {"nonce": "", "ciphertext": "c"}}]},
    ],
)
def test_parse_certificates_response_rejects_malformed(payload) -> None:
    with pytest.raises(MalformedResponse):
        parse_certificates_response(payload, API_V3_KEY)


@pytest.mark.asyncio
async def test_refresh_signs_bootstrap_request_and_replaces_table(merchant_keys, platform_keys) -> None:
    seen: dict = {}

    def _handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"data": [_encrypted_entry("PLAT1", platform_keys.cert_pem())]})

    store = PlatformCertificateStore(_cfg(merchant_keys), transport=httpx.MockTransport(_handler))
    store.replace({"OLD": CertificateEntry("OLD", "pem")})

    assert await store.refresh() == 1
    assert store.get("OLD") is None
    assert store.get("PLAT1").public_key_pem == platform_keys.public_pem
    assert seen["url"] == "https://api.mch.weixin.qq.com/v3/certificates"

    auth = seen["auth"]
    assert auth.startswith("WECHATPAY2-SHA256-RSA2048 ")
    assert 'mchid="1900000001"' in auth
    assert 'serial_no="MCHSERIAL"' in auth
    ts = re.search(r'timestamp="(\d+)"', auth).group(1)
    nonce = re.search(r'nonce_str="([^"]+)"', auth).group(1)
    sig = base64.b64decode(re.search(r'signature="([^"]+)"', auth).group(1))
    message = f"GET\n/v3/certificates\n{ts}\n{nonce}\n\n".encode("utf-8")
    merchant_keys.key.public_key().verify(sig, message, padding.PKCS1v15(), hashes.SHA256())


@pytest.mark.asyncio
async def test_refresh_malformed_response_keeps_previous_table(merchant_keys) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"serial_no": "BAD"}]})

    store = PlatformCertificateStore(_cfg(merchant_keys), transport=httpx.MockTransport(_handler))
    store.replace({"KEEP": CertificateEntry("KEEP", "pem")})

    with pytest.raises(MalformedResponse):
        await store.refresh()
    assert store.get("KEEP") is not None


@pytest.mark.asyncio
async def test_refresh_well_formed_empty_list_empties_table(merchant_keys) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": []})

    store = PlatformCertificateStore(_cfg(merchant_keys), transport=httpx.MockTransport(_handler))
    store.replace({"OLD": CertificateEntry("OLD", "pem")})
    assert await store.refresh() == 0
    assert store.serials() == []


@pytest.mark.asyncio
async def test_refresh_retries_server_errors(merchant_keys, platform_keys, caplog: pytest.LogCaptureFixture) -> None:
    calls = {"n": 0}

    def _handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"data": [_encrypted_entry("PLAT1", platform_keys.cert_pem())]})

    store = PlatformCertificateStore(_cfg(merchant_keys), transport=httpx.MockTransport(_handler))
    with caplog.at_level(logging.INFO, logger="paykit.gateway"):
        assert await store.refresh() == 1
    assert calls["n"] == 2
    assert "REQUEST wechat GET /v3/certificates attempt=2" in caplog.text


@pytest.mark.asyncio
async def test_refresh_client_error_is_not_retried(merchant_keys) -> None:
    calls = {"n": 0}

    def _handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(401, json={"code": "SIGN_ERROR", "message": "签名错误"})

    store = PlatformCertificateStore(_cfg(merchant_keys), transport=httpx.MockTransport(_handler))
    with pytest.raises(GatewayRejected) as exc:
        await store.refresh()
    assert exc.value.code == "SIGN_ERROR"
    assert exc.value.status_code == 401
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_refresh_network_error_maps_to_transport_error(merchant_keys, monkeypatch: pytest.MonkeyPatch) -> None:
    class _Client:
        def __init__(self, timeout, transport=None):
            self.timeout = timeout

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def get(self, url, headers=None):
            raise httpx.ConnectError("connection refused")

    monkeypatch.setattr("paykit.services.wechat_certs.httpx.AsyncClient", _Client)

    store = PlatformCertificateStore(_cfg(merchant_keys, max_retries=1))
    with pytest.raises(TransportError):
        await store.refresh()


@pytest.mark.asyncio
async def test_refresh_without_private_key_is_config_error() -> None:
    store = PlatformCertificateStore(WechatConfig(mchid="1", serial_no="s", api_v3_key=API_V3_KEY))
    with pytest.raises(ConfigError):
        await store.refresh()


def test_pinned_platform_public_key_lookup(merchant_keys, platform_keys) -> None:
    cfg = _cfg(
        merchant_keys,
        platform_public_key_id="PUB_KEY_ID_0001",
        platform_public_key=platform_keys.public_pem.replace("\n", "\\n"),
    )
    store = PlatformCertificateStore(cfg)
    entry = store.get("PUB_KEY_ID_0001")
    assert entry is not None
    assert "BEGIN PUBLIC KEY" in entry.public_key_pem
    assert store.get("OTHER") is None
    assert store.serials() == ["PUB_KEY_ID_0001"]


def test_snapshot_roundtrip_and_invalid_items(merchant_keys) -> None:
    store = PlatformCertificateStore(_cfg(merchant_keys))
    store.replace({"S1": CertificateEntry("S1", "pem1", expire_time="t")})
    raw = store.snapshot_json()

    other = PlatformCertificateStore(_cfg(merchant_keys))
    assert other.load_snapshot_json(raw) == 1
    assert other.get("S1") == CertificateEntry("S1", "pem1", expire_time="t")

    assert load_snapshot_entries("") == {}
    raw2 = json.dumps({"certs": ["x", {"serial_no": "", "public_key_pem": "p"}, {"serial_no": "OK", "public_key_pem": "p"}]})
    assert list(load_snapshot_entries(raw2)) == ["OK"]

    with pytest.raises(MalformedResponse):
        load_snapshot_entries("not-json")
    with pytest.raises(MalformedResponse):
        load_snapshot_entries("[]")
