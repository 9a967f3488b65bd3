import copy
import hashlib
import hmac

import pytest

from flightpay.services.hmac_service import (
    HMAC_FIELDS,
    build_hmac_message,
    compute_callback_hmac,
    verify_callback_hmac,
)

from .helpers import HMAC_SECRET, make_transaction


def test_message_concatenates_fields_in_wire_order() -> None:
    obj = make_transaction()

    expected = "".join([
        "150000",
        "2026-10-17T10:00:00.000000",
        "EGP",
        "false",
        "false",
        "5550001",
        "4321",
        "true",
        "false",
        "false",
        "false",
        "true",
        "false",
        "9870001",
        "302",
        "false",
        "2346",
        "MasterCard",
        "card",
        "true",
    ])

    assert len(HMAC_FIELDS) == 20
    assert build_hmac_message(obj) == expected


def test_compute_matches_reference_hmac_sha512() -> None:
    obj = make_transaction()
    reference = hmac.new(
        HMAC_SECRET.encode("utf-8"),
        build_hmac_message(obj).encode("utf-8"),
        hashlib.sha512,
    ).hexdigest()

    assert compute_callback_hmac(obj, HMAC_SECRET) == reference
    assert compute_callback_hmac(obj, HMAC_SECRET) == compute_callback_hmac(copy.deepcopy(obj), HMAC_SECRET)
    assert len(reference) == 128


def test_verify_accepts_genuine_signature_in_any_hex_case() -> None:
    obj = make_transaction()
    signature = compute_callback_hmac(obj, HMAC_SECRET)

    assert verify_callback_hmac(obj, signature, HMAC_SECRET) is True
    assert verify_callback_hmac(obj, signature.upper(), HMAC_SECRET) is True


@pytest.mark.parametrize(
    "path, value",
    [
        ("amount_cents", 1),
        ("success", False),
        ("pending", True),
        ("id", 5550002),
        ("currency", "USD"),
        ("order.id", 9870002),
        ("source_data.pan", "0000"),
    ],
)
def test_verify_detects_single_field_tampering(path: str, value) -> None:
    obj = make_transaction()
    signature = compute_callback_hmac(obj, HMAC_SECRET)

    tampered = copy.deepcopy(obj)
    target = tampered
    parts = path.split(".")
    for part in parts[:-1]:
        target = target[part]
    target[parts[-1]] = value

    assert verify_callback_hmac(tampered, signature, HMAC_SECRET) is False


def test_unsigned_fields_do_not_affect_signature() -> None:
    obj = make_transaction()
    signature = compute_callback_hmac(obj, HMAC_SECRET)

    obj["order"]["merchant_order_id"] = "something_else"
    obj["data"] = {"message": "Approved"}

    assert verify_callback_hmac(obj, signature, HMAC_SECRET) is True


def test_wrong_secret_fails() -> None:
    obj = make_transaction()
    signature = compute_callback_hmac(obj, "another_secret")

    assert verify_callback_hmac(obj, signature, HMAC_SECRET) is False


@pytest.mark.parametrize("received", [None, "", "not-hex", "é" * 128])
def test_verify_never_raises_on_bad_signature(received) -> None:
    assert verify_callback_hmac(make_transaction(), received, HMAC_SECRET) is False


def test_verify_rejects_missing_payload_or_secret() -> None:
    obj = make_transaction()
    signature = compute_callback_hmac(obj, HMAC_SECRET)

    assert verify_callback_hmac({}, signature, HMAC_SECRET) is False
    assert verify_callback_hmac(obj, signature, "") is False


def test_scalar_order_and_integral_float_render_like_the_gateway() -> None:
    obj = make_transaction()
    variant = copy.deepcopy(obj)
    variant["order"] = obj["order"]["id"]
    variant["amount_cents"] = 150000.0

    assert build_hmac_message(variant) == build_hmac_message(obj)


def test_missing_fields_render_empty() -> None:
    obj = make_transaction()
    del obj["source_data"]
    obj["owner"] = None

    message = build_hmac_message(obj)

    assert "302" not in message
    assert "MasterCard" not in message
