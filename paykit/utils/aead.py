from __future__ import annotations

import base64
import binascii

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import CryptoError

KEY_LENGTH = 32


def _key_bytes(key: str | bytes) -> bytes:
    key_bytes = key if isinstance(key, bytes) else key.encode("utf-8")
    if len(key_bytes) != KEY_LENGTH:
        raise CryptoError("api_v3_key must be 32 bytes")
    return key_bytes


def aes_gcm_decrypt(key: str | bytes, associated_data: str | None, nonce: str, ciphertext_b64: str) -> str:
    aesgcm = AESGCM(_key_bytes(key))
    ad_bytes = associated_data.encode("utf-8") if associated_data is not None else b""
    try:
        cipher_bytes = base64.b64decode(ciphertext_b64, validate=True)
        plain = aesgcm.decrypt(nonce.encode("utf-8"), cipher_bytes, ad_bytes)
        return plain.decode("utf-8")
    except (binascii.Error, InvalidTag, ValueError) as e:
        raise CryptoError("aes-gcm decrypt failed") from e


def aes_gcm_encrypt(key: str | bytes, associated_data: str | None, nonce: str, plaintext: str | bytes) -> str:
    aesgcm = AESGCM(_key_bytes(key))
    ad_bytes = associated_data.encode("utf-8") if associated_data is not None else b""
    data = plaintext if isinstance(plaintext, bytes) else plaintext.encode("utf-8")
    try:
        cipher_bytes = aesgcm.encrypt(nonce.encode("utf-8"), data, ad_bytes)
    except ValueError as e:
        raise CryptoError("aes-gcm encrypt failed") from e
    return base64.b64encode(cipher_bytes).decode("utf-8")
