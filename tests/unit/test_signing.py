"""Tests for HMAC request signing helpers."""

from jobrelay.security import canonical_json, sign, signature_matches, signed_headers


def test_sign_is_deterministic_and_body_sensitive():
    body = b'{"progress":10}'
    assert sign(body, "secret") == sign(body, "secret")
    assert len(sign(body, "secret")) == 64
    assert sign(body, "secret") != sign(b'{"progress":11}', "secret")
    assert sign(body, "secret") != sign(body, "other-secret")


def test_signature_matches_rejects_mutations_and_missing_signature():
    body = b'{"status":"failed"}'
    signature = sign(body, "secret")
    assert signature_matches(body, "secret", signature)
    assert not signature_matches(body + b" ", "secret", signature)
    assert not signature_matches(body, "secret", None)
    assert not signature_matches(body, "secret", "")


def test_canonical_json_is_sorted_and_compact():
    assert canonical_json({"b": 1, "a": {"d": 2, "c": 3}}) == b'{"a":{"c":3,"d":2},"b":1}'


def test_signed_headers_carry_all_four_values():
    body = canonical_json({"action": "start"})
    headers = signed_headers(body, api_key="key", token="tok", secret="secret", timestamp="1700000000000")
    assert headers["X-API-Key"] == "key"
    assert headers["X-Token"] == "tok"
    assert headers["X-Timestamp"] == "1700000000000"
    assert headers["X-Signature"] == sign(body, "secret")
    assert headers["Content-Type"] == "application/json"
