"""微信支付回调验签与解密"""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, cast

from ..config import WechatConfig
from ..errors import CertificateNotFound, MalformedResponse, NotifyRejected, SignatureInvalid
from ..utils.aead import aes_gcm_decrypt
from ..utils.canonical import build_notify_message
from ..utils.rsa_keys import rsa_verify_sha256
from .wechat_auth import AUTH_SCHEMA
from .wechat_certs import PlatformCertificateStore

logger = logging.getLogger(__name__)

HEADER_TIMESTAMP = "wechatpay-timestamp"
HEADER_NONCE = "wechatpay-nonce"
HEADER_SIGNATURE = "wechatpay-signature"
HEADER_SERIAL = "wechatpay-serial"
HEADER_SIGNATURE_TYPE = "wechatpay-signature-type"


@dataclass(frozen=True)
class NotificationEnvelope:
    timestamp: str
    nonce: str
    signature: str
    serial: str
    raw_body: bytes

    @classmethod
    def from_request(cls, headers: Mapping[str, str], body: str | bytes) -> "NotificationEnvelope":
        lowered = {str(k).lower(): str(v).strip() for k, v in headers.items()}
        envelope = cls(
            timestamp=lowered.get(HEADER_TIMESTAMP, ""),
            nonce=lowered.get(HEADER_NONCE, ""),
            signature=lowered.get(HEADER_SIGNATURE, ""),
            serial=lowered.get(HEADER_SERIAL, ""),
            raw_body=body if isinstance(body, bytes) else body.encode("utf-8"),
        )
        missing = [k for k in ("timestamp", "nonce", "signature", "serial") if not getattr(envelope, k)]
        if missing:
            raise NotifyRejected(f"missing signature headers: {','.join(missing)}")

        signature_type = lowered.get(HEADER_SIGNATURE_TYPE, "")
        if signature_type and signature_type != AUTH_SCHEMA:
            raise NotifyRejected(f"unsupported signature type: {signature_type}")
        return envelope


def decrypt_resource(api_v3_key: str, resource: Mapping[str, Any]) -> dict[str, Any]:
    ciphertext = str(resource.get("ciphertext") or "")
    nonce = str(resource.get("nonce") or "")
    ad = str(resource.get("associated_data") or "")
    if not ciphertext or not nonce:
        raise MalformedResponse("missing resource fields")
    plain = aes_gcm_decrypt(api_v3_key, ad, nonce, ciphertext)
    try:
        obj: object = json.loads(plain)
    except ValueError as e:
        raise MalformedResponse("resource plaintext is not json") from e
    if not isinstance(obj, dict):
        raise MalformedResponse("resource plaintext must be a json object")
    return cast(dict[str, Any], obj)


class WechatNotify:
    def __init__(self, cfg: WechatConfig, certs: PlatformCertificateStore) -> None:
        self._cfg = cfg
        self._certs = certs

    async def _public_key_for(self, serial: str) -> str:
        entry = self._certs.get(serial)
        if entry is None:
            # 缓存未命中时刷新一次
            logger.info("平台证书未命中，刷新证书 serial=%s", serial)
            _ = await self._certs.refresh()
            entry = self._certs.get(serial)
        if entry is None:
            raise CertificateNotFound(serial)
        return entry.public_key_pem

    async def verify(self, headers: Mapping[str, str], body: str | bytes) -> NotificationEnvelope:
        envelope = NotificationEnvelope.from_request(headers, body)
        public_key = await self._public_key_for(envelope.serial)
        message = build_notify_message(envelope.timestamp, envelope.nonce, envelope.raw_body)
        if not rsa_verify_sha256(public_key, message, envelope.signature):
            raise SignatureInvalid("wechat notify invalid signature")
        return envelope

    async def verify_and_decrypt(self, headers: Mapping[str, str], body: str | bytes) -> dict[str, Any]:
        envelope = await self.verify(headers, body)
        try:
            data_raw: object = json.loads(envelope.raw_body.decode("utf-8"))
        except ValueError as e:
            raise MalformedResponse("notify body is not json") from e
        if not isinstance(data_raw, dict):
            raise MalformedResponse("notify body must be a json object")
        data = cast(dict[str, Any], data_raw)

        resource = data.get("resource")
        if resource is None:
            return data
        if not isinstance(resource, dict):
            raise MalformedResponse("resource must be an object")
        return decrypt_resource(self._cfg.api_v3_key, cast(dict[str, Any], resource))
