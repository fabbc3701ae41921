"""微信支付平台证书缓存"""
from __future__ import annotations

import itertools
import json
import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, cast

import httpx

from ..config import WechatConfig
from ..errors import ConfigError, GatewayRejected, MalformedResponse, TransportError
from ..utils.aead import aes_gcm_decrypt
from ..utils.cert_sn import public_key_from_cert
from ..utils.logging_config import gateway_logger
from ..utils.retry import retry_async
from ..utils.rsa_keys import PUBLIC_KEY_LABEL, load_key_text, load_rsa_private_key
from .wechat_auth import USER_AGENT, build_authorization

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CertificateEntry:
    serial_no: str
    public_key_pem: str
    effective_time: str | None = None
    expire_time: str | None = None


def _require_str(obj: Mapping[str, Any], key: str, where: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedResponse(f"{where} missing {key}")
    return value


def parse_certificates_response(data_raw: object, api_v3_key: str) -> dict[str, CertificateEntry]:
    if not isinstance(data_raw, dict):
        raise MalformedResponse("wechatpay certificates response must be an object")
    items_raw = cast(dict[str, Any], data_raw).get("data")
    if not isinstance(items_raw, list):
        raise MalformedResponse("wechatpay certificates response missing data list")

    out: dict[str, CertificateEntry] = {}
    for item_obj in cast(list[object], items_raw):
        if not isinstance(item_obj, dict):
            raise MalformedResponse("certificate entry must be an object")
        item = cast(dict[str, Any], item_obj)
        serial = _require_str(item, "serial_no", "certificate entry").strip()
        enc = item.get("encrypt_certificate")
        if not isinstance(enc, dict):
            raise MalformedResponse(f"certificate {serial} missing encrypt_certificate")
        enc_dict = cast(dict[str, Any], enc)
        ciphertext = _require_str(enc_dict, "ciphertext", f"certificate {serial}")
        nonce = _require_str(enc_dict, "nonce", f"certificate {serial}")
        ad = str(enc_dict.get("associated_data") or "")

        cert_pem = aes_gcm_decrypt(api_v3_key, ad, nonce, ciphertext)
        out[serial] = CertificateEntry(
            serial_no=serial,
            public_key_pem=public_key_from_cert(cert_pem),
            effective_time=str(item.get("effective_time") or "").strip() or None,
            expire_time=str(item.get("expire_time") or "").strip() or None,
        )
    return out


class PlatformCertificateStore:
    """平台证书表：按序列号查公钥，刷新时整表替换"""

    def __init__(
        self,
        cfg: WechatConfig,
        *,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = cfg
        self._base_url = (base_url or cfg.base_url).rstrip("/")
        self._transport = transport
        self._swap_lock = threading.Lock()
        self._certs: Mapping[str, CertificateEntry] = MappingProxyType({})
        self._pinned: Mapping[str, CertificateEntry] = MappingProxyType({})
        self._private_key = load_rsa_private_key(cfg.private_key) if cfg.private_key else None

        if cfg.platform_public_key_id and cfg.platform_public_key:
            pinned_pem = load_key_text(cfg.platform_public_key, PUBLIC_KEY_LABEL)
            self._pinned = MappingProxyType(
                {cfg.platform_public_key_id: CertificateEntry(cfg.platform_public_key_id, pinned_pem)}
            )

    @property
    def certificates_url(self) -> str:
        return f"{self._base_url}{self._cfg.certificates_path}"

    def get(self, serial: str) -> CertificateEntry | None:
        entry = self._certs.get(serial)
        if entry is None:
            entry = self._pinned.get(serial)
        return entry

    def serials(self) -> list[str]:
        return sorted(set(self._certs) | set(self._pinned))

    def replace(self, certs: Mapping[str, CertificateEntry]) -> None:
        snapshot = MappingProxyType(dict(certs))
        with self._swap_lock:
            self._certs = snapshot

    async def _fetch_once(self, attempt: int = 1) -> object:
        if self._private_key is None:
            raise ConfigError("merchant private key not configured")
        authorization = build_authorization(
            mchid=self._cfg.mchid,
            serial_no=self._cfg.serial_no,
            private_key=self._private_key,
            method="GET",
            url=self.certificates_url,
            body="",
        )
        headers = {
            "Authorization": authorization,
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        gateway_logger.log_request("wechat", "GET", self._cfg.certificates_path, attempt=attempt)
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._cfg.timeout_seconds, transport=self._transport) as client:
                res = await client.get(self.certificates_url, headers=headers)
        except httpx.HTTPError as e:
            gateway_logger.log_error("wechat", "GET", self._cfg.certificates_path, str(e))
            raise TransportError(f"fetch platform certificates: {e}") from e
        gateway_logger.log_response("wechat", "GET", self._cfg.certificates_path, res.status_code, (time.perf_counter() - started) * 1000)

        if res.status_code >= 500:
            raise TransportError(f"HTTP {res.status_code}", status_code=res.status_code)
        try:
            data_raw: object = res.json()
        except ValueError as e:
            raise MalformedResponse("wechatpay certificates response is not json") from e
        if res.status_code >= 400:
            raise GatewayRejected.from_wechat_response(data_raw, status_code=res.status_code)
        return data_raw

    async def refresh(self) -> int:
        """拉取并解密平台证书，成功后原子替换缓存表，返回证书数量"""
        attempt_no = itertools.count(1)

        async def _op() -> object:
            return await self._fetch_once(attempt=next(attempt_no))

        data_raw = await retry_async(self._cfg.max_retries, _op)
        certs = parse_certificates_response(data_raw, self._cfg.api_v3_key)
        self.replace(certs)
        logger.info("平台证书已刷新 count=%s serials=%s", len(certs), ",".join(sorted(certs)))
        return len(certs)

    def snapshot_json(self) -> str:
        payload = {
            "updated_at": int(time.time()),
            "certs": [
                {
                    "serial_no": c.serial_no,
                    "public_key_pem": c.public_key_pem,
                    "effective_time": c.effective_time,
                    "expire_time": c.expire_time,
                }
                for c in self._certs.values()
            ],
        }
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))

    def load_snapshot_json(self, raw: str) -> int:
        certs = load_snapshot_entries(raw)
        self.replace(certs)
        return len(certs)


def load_snapshot_entries(raw: str) -> dict[str, CertificateEntry]:
    s = str(raw or "").strip()
    if not s:
        return {}
    try:
        obj_raw: object = json.loads(s)
    except ValueError as e:
        raise MalformedResponse("certificate snapshot is not json") from e
    if not isinstance(obj_raw, dict):
        raise MalformedResponse("certificate snapshot must be an object")
    certs_raw = cast(dict[str, Any], obj_raw).get("certs")
    if not isinstance(certs_raw, list):
        raise MalformedResponse("certificate snapshot missing certs list")

    out: dict[str, CertificateEntry] = {}
    for item_obj in cast(list[object], certs_raw):
        if not isinstance(item_obj, dict):
            continue
        item = cast(dict[str, Any], item_obj)
        serial = str(item.get("serial_no") or "").strip()
        pem = str(item.get("public_key_pem") or "")
        if not serial or not pem:
            continue
        out[serial] = CertificateEntry(
            serial_no=serial,
            public_key_pem=pem,
            effective_time=str(item.get("effective_time") or "").strip() or None,
            expire_time=str(item.get("expire_time") or "").strip() or None,
        )
    return out
