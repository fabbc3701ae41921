from __future__ import annotations

import secrets
import string
import time

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from ..utils.canonical import build_request_message, url_path_with_query
from ..utils.rsa_keys import rsa_sign_sha256

AUTH_SCHEMA = "WECHATPAY2-SHA256-RSA2048"
USER_AGENT = "paykit/1.0"
_NONCE_ALPHABET = string.digits + string.ascii_lowercase


def gen_nonce(length: int = 32) -> str:
    return "".join(secrets.choice(_NONCE_ALPHABET) for _ in range(length))


def now_ts() -> str:
    return str(int(time.time()))


def build_authorization(
    *,
    mchid: str,
    serial_no: str,
    private_key: str | RSAPrivateKey,
    method: str,
    url: str,
    body: str,
    timestamp: str | None = None,
    nonce_str: str | None = None,
) -> str:
    if timestamp is None:
        timestamp = now_ts()
    if nonce_str is None:
        nonce_str = gen_nonce()

    message = build_request_message(method, url_path_with_query(url), timestamp, nonce_str, body)
    signature = rsa_sign_sha256(private_key, message)

    return (
        f"{AUTH_SCHEMA} "
        f'mchid="{mchid}",'
        f'nonce_str="{nonce_str}",'
        f'timestamp="{timestamp}",'
        f'serial_no="{serial_no}",'
        f'signature="{signature}"'
    )
