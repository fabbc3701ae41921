from __future__ import annotations

import base64
import binascii
import re
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from cryptography.hazmat.primitives.serialization import (
    load_der_private_key,
    load_der_public_key,
    load_pem_private_key,
    load_pem_public_key,
)

from ..errors import CryptoError

PRIVATE_KEY_LABEL = "RSA PRIVATE KEY"
PUBLIC_KEY_LABEL = "PUBLIC KEY"

_PEM_BODY_RE = re.compile(r"-----BEGIN [A-Z0-9 ]+-----(.*?)-----END [A-Z0-9 ]+-----", re.S)


def _normalize_pem(value: str) -> str:
    if not value:
        return ""
    return value.strip().replace("\\n", "\n")


def wrap_pem(raw: str, label: str = PRIVATE_KEY_LABEL) -> str:
    body = "".join(raw.split())
    lines = [body[i : i + 64] for i in range(0, len(body), 64)]
    return f"-----BEGIN {label}-----\n" + "".join(f"{line}\n" for line in lines) + f"-----END {label}-----"


def _read_key_file(source: str) -> str | None:
    if "-----BEGIN" in source or "\n" in source:
        return None
    try:
        path = Path(source)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")
    except (OSError, ValueError):
        return None


def load_key_text(source: str, label: str = PRIVATE_KEY_LABEL) -> str:
    """读取密钥文本：优先按文件路径读取，非 PEM 内容自动包装为 PEM 格式"""
    raw = str(source or "")
    data = _read_key_file(raw.strip())
    if data is not None:
        if raw.strip().endswith(".pem") or "-----BEGIN" in data:
            return _normalize_pem(data)
        return wrap_pem(data, label)

    text = _normalize_pem(raw)
    if not text:
        raise CryptoError("empty key material")
    if "-----BEGIN" in text:
        return text
    return wrap_pem(text, label)


def _pem_body_der(pem: str) -> bytes:
    m = _PEM_BODY_RE.search(pem)
    if not m:
        raise CryptoError("key material has no PEM body")
    try:
        return base64.b64decode("".join(m.group(1).split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"invalid base64 key body: {e}") from e


def load_rsa_private_key(source: str | RSAPrivateKey) -> RSAPrivateKey:
    if isinstance(source, RSAPrivateKey):
        return source
    pem = load_key_text(source, PRIVATE_KEY_LABEL)
    try:
        key = load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm):
        # 控制台导出的裸密钥可能是 PKCS#8，包装成 RSA PRIVATE KEY 后需按 DER 解析
        try:
            key = load_der_private_key(_pem_body_der(pem), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise CryptoError(f"invalid private key: {e}") from e
    if not isinstance(key, RSAPrivateKey):
        raise CryptoError("private key must be RSA")
    return key


def load_rsa_public_key(source: str | RSAPublicKey) -> RSAPublicKey:
    if isinstance(source, RSAPublicKey):
        return source
    pem = load_key_text(source, PUBLIC_KEY_LABEL)
    try:
        if "-----BEGIN CERTIFICATE-----" in pem:
            key = x509.load_pem_x509_certificate(pem.encode("utf-8")).public_key()
        else:
            try:
                key = load_pem_public_key(pem.encode("utf-8"))
            except ValueError:
                key = load_der_public_key(_pem_body_der(pem))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"invalid public key: {e}") from e
    if not isinstance(key, RSAPublicKey):
        raise CryptoError("public key must be RSA")
    return key


def rsa_sign_sha256(private_key: str | RSAPrivateKey, message: str | bytes) -> str:
    key = load_rsa_private_key(private_key)
    data = message if isinstance(message, bytes) else message.encode("utf-8")
    try:
        signature = key.sign(data, padding.PKCS1v15(), hashes.SHA256())
    except (ValueError, TypeError) as e:
        raise CryptoError(f"rsa sign failed: {e}") from e
    return base64.b64encode(signature).decode("utf-8")


def rsa_verify_sha256(public_key: str | RSAPublicKey, message: str | bytes, signature_b64: str) -> bool:
    try:
        signature = base64.b64decode(str(signature_b64 or "").strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"invalid signature encoding: {e}") from e
    if not signature:
        raise CryptoError("empty signature")

    key = load_rsa_public_key(public_key)
    data = message if isinstance(message, bytes) else message.encode("utf-8")
    try:
        key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
        return True
    except InvalidSignature:
        return False
