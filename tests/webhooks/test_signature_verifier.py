import pytest

from application.services.signature_verifier import WebhookSignatureVerifier
from domain.common.exceptions import SignatureError, StaleEventError


NOW = 1_700_000_000
BODY = b'{"id":"evt_1","type":"checkout.session.completed"}'


def _verifier(*secrets, tolerance=300, max_future=60):
    return WebhookSignatureVerifier(secrets, tolerance_seconds=tolerance, max_future_seconds=max_future, clock=lambda: NOW)


def test_valid_signature_returns_timestamp():
    header = WebhookSignatureVerifier.build_header(BODY, NOW - 10, "whsec_a")
    assert _verifier("whsec_a").verify(BODY, header) == NOW - 10


def test_previous_secret_accepted_during_rotation():
    header = WebhookSignatureVerifier.build_header(BODY, NOW, "whsec_old")
    assert _verifier("whsec_new", "whsec_old").verify(BODY, header) == NOW


def test_any_v1_entry_may_match():
    good = WebhookSignatureVerifier.sign(BODY, NOW, "whsec_a")
    header = f"t={NOW},v0=legacy,v1={'0' * 64},v1={good}"
    assert _verifier("whsec_a").verify(BODY, header) == NOW


def test_tampered_body_rejected():
    header = WebhookSignatureVerifier.build_header(BODY, NOW, "whsec_a")
    with pytest.raises(SignatureError):
        _verifier("whsec_a").verify(BODY + b" ", header)


def test_wrong_secret_rejected():
    header = WebhookSignatureVerifier.build_header(BODY, NOW, "whsec_other")
    with pytest.raises(SignatureError):
        _verifier("whsec_a").verify(BODY, header)


@pytest.mark.parametrize("header", [None, "", "garbage", "t=abc,v1=deadbeef", f"t={NOW}", "v1=deadbeef"])
def test_missing_or_unparsable_header_rejected(header):
    with pytest.raises(SignatureError):
        _verifier("whsec_a").verify(BODY, header)


def test_no_secret_configured_rejects_everything():
    header = WebhookSignatureVerifier.build_header(BODY, NOW, "whsec_a")
    with pytest.raises(SignatureError):
        _verifier().verify(BODY, header)


def test_event_signed_ten_minutes_ago_is_stale():
    header = WebhookSignatureVerifier.build_header(BODY, NOW - 600, "whsec_a")
    with pytest.raises(StaleEventError) as exc_info:
        _verifier("whsec_a").verify(BODY, header)
    assert exc_info.value.details["age_seconds"] == 600


def test_timestamp_at_tolerance_edge_is_accepted():
    header = WebhookSignatureVerifier.build_header(BODY, NOW - 300, "whsec_a")
    assert _verifier("whsec_a").verify(BODY, header) == NOW - 300


def test_future_timestamp_beyond_skew_is_stale():
    header = WebhookSignatureVerifier.build_header(BODY, NOW + 120, "whsec_a")
    with pytest.raises(StaleEventError):
        _verifier("whsec_a").verify(BODY, header)


def test_signature_checked_before_freshness():
    # An old event with a bad signature is a signature failure, not a stale one
    header = f"t={NOW - 3600},v1={'0' * 64}"
    with pytest.raises(SignatureError):
        _verifier("whsec_a").verify(BODY, header)
