from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from ..errors import CryptoError

logger = logging.getLogger(__name__)

CERT_END = "-----END CERTIFICATE-----"
RSA_SIGNATURE_OID_PREFIX = "1.2.840.113549.1.1"


def _as_bytes(content: str | bytes) -> bytes:
    return content if isinstance(content, bytes) else content.encode("utf-8")


def load_certificate(cert_content: str | bytes) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(_as_bytes(cert_content))
    except ValueError as e:
        raise CryptoError(f"parse_x509_pem: {e}") from e


# 与支付宝 SDK 计算证书序列号时的 issuer 展示名保持一致，未收录的 OID 按点分形式输出
ATTRIBUTE_NAMES = {
    "2.5.4.3": "CN",
    "2.5.4.6": "C",
    "2.5.4.7": "L",
    "2.5.4.8": "ST",
    "2.5.4.10": "O",
    "2.5.4.11": "OU",
    "0.9.2342.19200300.100.1.25": "DC",
    "1.2.840.113549.1.9.1": "Email",
    "2.5.4.4": "surname",
    "2.5.4.5": "serialNumber",
    "2.5.4.9": "streetAddress",
    "2.5.4.12": "title",
    "2.5.4.13": "description",
    "2.5.4.42": "givenName",
    "2.5.4.43": "initials",
    "2.5.4.44": "generationQualifier",
    "2.5.4.46": "dnQualifier",
    "2.5.4.65": "pseudonym",
}


def _attribute_name(attr: x509.NameAttribute) -> str:
    dotted = attr.oid.dotted_string
    return ATTRIBUTE_NAMES.get(dotted, dotted)


def _issuer_display(cert: x509.Certificate) -> str:
    rdns: list[str] = []
    for rdn in cert.issuer.rdns:
        rdns.append(" + ".join(f"{_attribute_name(attr)}={attr.value!s}" for attr in rdn))
    return ", ".join(rdns)


def cert_sn_from_pem(cert_content: str | bytes) -> str:
    """从证书文本计算证书序列号（app_cert_sn、alipay_cert_sn）"""
    cert = load_certificate(cert_content)
    name = _issuer_display(cert)
    # issuer 本身以 CN 开头时无需逆序
    if not name.startswith("CN"):
        attributes = name.split(", ")
        attributes.reverse()
        name = ",".join(attributes)
    raw = name + str(cert.serial_number)
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def root_cert_sn_from_pem(cert_contents: str | bytes) -> str:
    """从根证书链文本计算 alipay_root_cert_sn，只保留 RSA 签名的证书"""
    try:
        text = cert_contents.decode("utf-8") if isinstance(cert_contents, bytes) else cert_contents
    except UnicodeDecodeError as e:
        raise CryptoError("root cert bundle is not utf-8") from e

    sns: list[str] = []
    for block in text.split(CERT_END):
        cert_data = block + CERT_END
        try:
            cert = x509.load_pem_x509_certificate(cert_data.encode("utf-8"))
        except ValueError:
            continue
        if not cert.signature_algorithm_oid.dotted_string.startswith(RSA_SIGNATURE_OID_PREFIX):
            continue
        sns.append(cert_sn_from_pem(cert_data))

    if not sns:
        raise CryptoError("failed to get sn, please check your cert")
    return "_".join(sns)


def _read_file(path: str | Path) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise CryptoError(f"read cert file failed: {e}") from e


def get_cert_sn(cert_path: str | Path) -> str:
    logger.debug("cert_path: %s", cert_path)
    return cert_sn_from_pem(_read_file(cert_path))


def get_root_cert_sn(root_cert_path: str | Path) -> str:
    logger.debug("root_cert_path: %s", root_cert_path)
    return root_cert_sn_from_pem(_read_file(root_cert_path))


def public_key_from_cert(cert_content: str | bytes) -> str:
    cert = load_certificate(cert_content)
    pub = cert.public_key()
    return pub.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo).decode("utf-8")


def get_public_key_with_path(cert_path: str | Path) -> str:
    """从支付宝公钥证书文件中提取支付宝公钥（alipayCertPublicKey_RSA2.crt）"""
    logger.debug("alipay_cert_path: %s", cert_path)
    return public_key_from_cert(_read_file(cert_path))
