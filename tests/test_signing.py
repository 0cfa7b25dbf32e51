"""Tests for signed URL verification."""

import time
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import REGISTRY

from signedlinks.common.errors import MissingKeyError
from signedlinks.common.http import request_from_url
from signedlinks.root_url import RootUrl
from signedlinks.signing import (
    SignatureVerifier,
    canonical_url,
    compute_signature,
    expiration_timestamp,
    filter_query,
    has_valid_signature,
    sign_url,
    signature_has_not_expired,
    verify,
)

from conftest import SIGNING_KEY, expected_signature


def _checks(outcome: str) -> float:
    value = REGISTRY.get_sample_value(
        "signedlinks_signature_checks_total",
        {"outcome": outcome},
    )
    return value or 0.0


class TestCanonicalUrl:
    """Test canonical URL reconstruction."""

    def test_absolute_url_drops_signature(self):
        request = request_from_url("https://example.com/invoice/1?signature=abc&foo=bar")
        assert canonical_url(request) == "https://example.com/invoice/1?foo=bar"

    def test_relative_url(self):
        request = request_from_url("https://example.com/invoice/1?foo=bar&signature=abc")
        assert canonical_url(request, absolute=False) == "/invoice/1?foo=bar"

    def test_trailing_question_mark_stripped(self):
        request = request_from_url("https://example.com/invoice/1?signature=abc")
        assert canonical_url(request) == "https://example.com/invoice/1"

    def test_site_root(self):
        request = request_from_url("https://example.com/?signature=abc")
        assert canonical_url(request) == "https://example.com"
        assert canonical_url(request, absolute=False) == "/"

    def test_preserves_order_and_encoding(self):
        request = request_from_url(
            "https://example.com/files?b=2&name=a%20b&signature=x&a=1"
        )
        assert canonical_url(request) == "https://example.com/files?b=2&name=a%20b&a=1"

    def test_uses_forced_root(self):
        request = request_from_url("http://10.0.0.5:8000/invoice/1?foo=bar")
        root_url = RootUrl(root="https://app.example.com/base")
        assert canonical_url(request, root_url) == "https://app.example.com/base/invoice/1?foo=bar"

    def test_ignored_parameters_removed(self):
        request = request_from_url("https://example.com/p?utm=1&id=7&signature=x")
        assert canonical_url(request, ignore_query=["utm"]) == "https://example.com/p?id=7"

    def test_filter_matches_name_before_first_equals(self):
        assert filter_query("signature=a=b&x=1&signature", ["signature"]) == "x=1"
        assert filter_query("", ["signature"]) == ""


class TestVerify:
    """Test signature verification."""

    def test_valid_signature(self):
        signature = expected_signature("https://example.com/invoice/1?foo=bar")
        request = request_from_url(
            f"https://example.com/invoice/1?signature={signature}&foo=bar"
        )
        assert verify(request, SIGNING_KEY) is True

    def test_signature_for_other_url_rejected(self):
        signature = expected_signature("https://example.com/invoice/2?foo=bar")
        request = request_from_url(
            f"https://example.com/invoice/1?signature={signature}&foo=bar"
        )
        assert verify(request, SIGNING_KEY) is False

    def test_wrong_key_rejected(self):
        signature = expected_signature("https://example.com/invoice/1?foo=bar", key="other")
        request = request_from_url(
            f"https://example.com/invoice/1?signature={signature}&foo=bar"
        )
        assert verify(request, SIGNING_KEY) is False

    def test_missing_signature_returns_false(self):
        request = request_from_url("https://example.com/invoice/1?foo=bar")
        assert verify(request, SIGNING_KEY) is False

    def test_empty_signature_returns_false(self):
        request = request_from_url("https://example.com/invoice/1?signature=")
        assert verify(request, SIGNING_KEY) is False

    def test_non_hex_signature_returns_false(self):
        request = request_from_url("https://example.com/invoice/1?signature=%C3%A9t%C3%A9")
        assert verify(request, SIGNING_KEY) is False

    @pytest.mark.parametrize("key", [None, "", b""])
    def test_missing_key_raises(self, key):
        request = request_from_url("https://example.com/invoice/1?signature=abc")
        with pytest.raises(MissingKeyError):
            verify(request, key)

    def test_bytes_key(self):
        signature = expected_signature("https://example.com/a")
        request = request_from_url(f"https://example.com/a?signature={signature}")
        assert verify(request, SIGNING_KEY.encode()) is True

    def test_ignored_parameters_do_not_affect_result(self):
        url = sign_url("https://example.com/report?id=7", SIGNING_KEY)
        request = request_from_url(f"{url}&utm_source=mail")

        assert verify(request, SIGNING_KEY) is False
        assert verify(request, SIGNING_KEY, ignore_query=["utm_source"]) is True

    def test_relative_signature_accepted_on_any_host(self):
        url = sign_url("/downloads/42", SIGNING_KEY)
        request = request_from_url(f"http://internal:8000{url}")
        assert verify(request, SIGNING_KEY, absolute=False) is True
        assert verify(request, SIGNING_KEY) is False

    def test_sign_and_verify_round_trip(self):
        url = "https://example.com/invoice/1?foo=bar"
        assert compute_signature(url, SIGNING_KEY) == expected_signature(url)
        request = request_from_url(sign_url(url, SIGNING_KEY))
        assert verify(request, SIGNING_KEY) is True


class TestExpiry:
    """Test the expires parameter."""

    def test_no_expires_never_expires(self):
        request = request_from_url("https://example.com/a")
        assert signature_has_not_expired(request) is True

    def test_future_expires(self):
        request = request_from_url(f"https://example.com/a?expires={int(time.time()) + 60}")
        assert signature_has_not_expired(request) is True

    def test_past_expires(self):
        request = request_from_url("https://example.com/a?expires=1000")
        assert signature_has_not_expired(request) is False

    def test_expires_at_current_second_still_valid(self):
        request = request_from_url("https://example.com/a?expires=5000")
        assert signature_has_not_expired(request, now=5000) is True
        assert signature_has_not_expired(request, now=5001) is False

    def test_zero_expires_never_expires(self):
        request = request_from_url("https://example.com/a?expires=0")
        assert signature_has_not_expired(request, now=5000) is True

    def test_garbage_expires_treated_as_expired(self):
        request = request_from_url("https://example.com/a?expires=tomorrow")
        assert signature_has_not_expired(request) is False

    def test_expired_link_with_valid_signature(self):
        url = sign_url("https://example.com/a", SIGNING_KEY, expires_at=int(time.time()) - 10)
        request = request_from_url(url)

        assert verify(request, SIGNING_KEY) is True
        assert has_valid_signature(request, SIGNING_KEY) is False

    def test_active_link(self):
        url = sign_url("https://example.com/a", SIGNING_KEY, expires_at=timedelta(minutes=5))
        assert has_valid_signature(request_from_url(url), SIGNING_KEY) is True

    def test_tampered_expiry_rejected(self):
        url = sign_url("https://example.com/a", SIGNING_KEY, expires_at=int(time.time()) - 10)
        tampered = url.replace("expires=", "expires=9")
        assert has_valid_signature(request_from_url(tampered), SIGNING_KEY) is False

    def test_expiration_timestamp_conversions(self):
        moment = datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert expiration_timestamp(moment) == int(moment.timestamp())
        assert expiration_timestamp(1234.9) == 1234
        assert abs(expiration_timestamp(timedelta(seconds=30)) - (time.time() + 30)) < 2


class TestSignUrl:
    """Test attaching signatures to generated URLs."""

    def test_appends_signature(self):
        url = "https://example.com/invoice/1?foo=bar"
        signed = sign_url(url, SIGNING_KEY)
        assert signed == f"{url}&signature={expected_signature(url)}"

    def test_expires_is_signed(self):
        signed = sign_url("https://example.com/a", SIGNING_KEY, expires_at=2000000000)
        covered = "https://example.com/a?expires=2000000000"
        assert signed == f"{covered}&signature={expected_signature(covered)}"

    def test_fragment_kept_outside_signature(self):
        signed = sign_url("https://example.com/a#top", SIGNING_KEY)
        assert signed.endswith("#top")
        assert expected_signature("https://example.com/a") in signed

    @pytest.mark.parametrize(
        "url,expires_at",
        [
            ("https://example.com/a?signature=x", None),
            ("https://example.com/a?expires=1", 2000000000),
        ],
    )
    def test_reserved_parameters_rejected(self, url, expires_at):
        with pytest.raises(ValueError, match="reserved parameter"):
            sign_url(url, SIGNING_KEY, expires_at=expires_at)

    def test_missing_key_raises(self):
        with pytest.raises(MissingKeyError):
            sign_url("https://example.com/a", None)


class TestSignatureVerifier:
    """Test the verifier service object."""

    def test_records_outcomes(self):
        verifier = SignatureVerifier(SIGNING_KEY)
        valid = request_from_url(verifier.sign("https://example.com/a"))
        invalid = request_from_url("https://example.com/a?signature=deadbeef")
        expired = request_from_url(verifier.sign("https://example.com/a", expires_at=1000))

        before = {o: _checks(o) for o in ("valid", "invalid", "expired")}
        assert verifier.has_valid_signature(valid) is True
        assert verifier.has_valid_signature(invalid) is False
        assert verifier.has_valid_signature(expired) is False

        for outcome in before:
            assert _checks(outcome) == before[outcome] + 1

    def test_missing_key_propagates(self):
        verifier = SignatureVerifier(None)
        before = _checks("misconfigured")
        with pytest.raises(MissingKeyError):
            verifier.has_valid_signature(request_from_url("https://example.com/a?signature=x"))
        assert _checks("misconfigured") == before + 1

    def test_configured_ignore_query_combined_with_call(self):
        verifier = SignatureVerifier(SIGNING_KEY, ignore_query=["utm_source"])
        url = verifier.sign("https://example.com/a?id=1")
        request = request_from_url(f"{url}&utm_source=x&ref=y")

        assert verifier.verify(request) is False
        assert verifier.verify(request, ignore_query=["ref"]) is True

    def test_uses_root_url(self):
        root_url = RootUrl(root="https://app.example.com")
        verifier = SignatureVerifier(SIGNING_KEY, root_url)
        url = verifier.sign("https://app.example.com/a")
        path_and_query = url.removeprefix("https://app.example.com")

        request = request_from_url(f"http://127.0.0.1:8000{path_and_query}")
        assert verifier.root_url is root_url
        assert verifier.has_valid_signature(request) is True
