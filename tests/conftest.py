"""Pytest配置文件"""
import datetime
import sys
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, PublicFormat

_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from paykit.config import get_settings


class KeyPair:
    def __init__(self, key: rsa.RSAPrivateKey):
        self.key = key
        self.private_pem = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()).decode("utf-8")
        self.public_pem = key.public_key().public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo).decode("utf-8")

    def cert_pem(self, common_name: str = "test", serial: int = 1) -> str:
        name = x509.Name([x509.NameAttribute(x509.oid.NameOID.COMMON_NAME, common_name)])
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.key.public_key())
            .serial_number(serial)
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=1))
            .sign(private_key=self.key, algorithm=hashes.SHA256())
        )
        return cert.public_bytes(Encoding.PEM).decode("utf-8")


def _gen() -> KeyPair:
    return KeyPair(rsa.generate_private_key(public_exponent=65537, key_size=2048))


@pytest.fixture(scope="session")
def merchant_keys() -> KeyPair:
    """商户 API 私钥"""
    return _gen()


@pytest.fixture(scope="session")
def platform_keys() -> KeyPair:
    """模拟网关侧（微信平台证书 / 支付宝公钥）密钥"""
    return _gen()


@pytest.fixture(scope="session")
def other_keys() -> KeyPair:
    return _gen()


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
