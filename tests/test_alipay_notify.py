import pytest

from paykit.config import AlipayConfig
from paykit.errors import NotifyRejected, SignatureInvalid, TradeStatusNotSuccess
from paykit.services.alipay_notify import AlipayNotify
from paykit.utils.canonical import build_sort_sign_string
from paykit.utils.rsa_keys import rsa_sign_sha256

APP_ID = "2021000000000001"


def _params(key, **overrides) -> dict:
    params = {
        "notify_time": "2026-01-01 12:00:00",
        "notify_type": "trade_status_sync",
        "notify_id": "ac05099524730693a8b330c5ecf72da9786",
        "app_id": APP_ID,
        "charset": "utf-8",
        "version": "1.0",
        "trade_no": "2026010122001419",
        "out_trade_no": "A20260101",
        "trade_status": "TRADE_SUCCESS",
        "total_amount": "0.10",
        "seller_id": "2088101106499364",
        "subject": "会员",
    }
    params.update(overrides)
    params["sign_type"] = "RSA2"
    params["sign"] = rsa_sign_sha256(key, build_sort_sign_string(params, exclude=("sign", "sign_type")))
    return params


def _notify(platform_keys) -> AlipayNotify:
    cfg = AlipayConfig(app_id=APP_ID, private_key="unused", alipay_public_key=platform_keys.public_pem)
    return AlipayNotify(cfg, cfg.alipay_public_key)


def test_verify_notify_returns_data(platform_keys) -> None:
    data = _notify(platform_keys).verify_notify(_params(platform_keys.key))
    assert data.out_trade_no == "A20260101"
    assert data.trade_no == "2026010122001419"
    assert data.total_amount == "0.10"
    assert data.seller_id == "2088101106499364"
    assert data.others["subject"] == "会员"
    assert "sign" in data.others


def test_trade_finished_is_success(platform_keys) -> None:
    data = _notify(platform_keys).verify_notify(_params(platform_keys.key, trade_status="TRADE_FINISHED"))
    assert data.trade_status == "TRADE_FINISHED"


def test_sign_type_is_not_part_of_signed_string(platform_keys) -> None:
    params = _params(platform_keys.key)
    params["sign_type"] = "rsa2"
    assert _notify(platform_keys).verify_notify(params).trade_status == "TRADE_SUCCESS"


def test_tampered_amount_is_signature_invalid(platform_keys) -> None:
    params = _params(platform_keys.key)
    params["total_amount"] = "100.00"
    with pytest.raises(SignatureInvalid):
        _notify(platform_keys).verify_notify(params)


def test_other_key_is_signature_invalid(platform_keys, other_keys) -> None:
    with pytest.raises(SignatureInvalid):
        _notify(platform_keys).verify_notify(_params(other_keys.key))


def test_missing_sign_rejected(platform_keys) -> None:
    params = _params(platform_keys.key)
    del params["sign"]
    with pytest.raises(NotifyRejected):
        _notify(platform_keys).verify_notify(params)


def test_downgraded_sign_type_rejected(platform_keys) -> None:
    params = _params(platform_keys.key)
    params["sign_type"] = "RSA"
    with pytest.raises(NotifyRejected):
        _notify(platform_keys).verify_notify(params)


def test_app_id_mismatch_rejected(platform_keys) -> None:
    with pytest.raises(NotifyRejected):
        _notify(platform_keys).verify_notify(_params(platform_keys.key, app_id="2021999999999999"))


def test_missing_required_field_rejected(platform_keys) -> None:
    with pytest.raises(NotifyRejected):
        _notify(platform_keys).verify_notify(_params(platform_keys.key, trade_no=""))


def test_pending_status_raises_trade_status_not_success(platform_keys) -> None:
    with pytest.raises(TradeStatusNotSuccess) as exc:
        _notify(platform_keys).verify_notify(_params(platform_keys.key, trade_status="WAIT_BUYER_PAY"))
    assert exc.value.trade_status == "WAIT_BUYER_PAY"


def test_success_response_literal() -> None:
    assert AlipayNotify.success_response() == "success"
