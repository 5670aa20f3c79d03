"""Tests for webhook signature verification and event parsing."""

import pytest

from checkrun_webhook.github.webhooks import (
    is_check_suite_requested,
    parse_check_suite_event,
    verify_webhook_signature,
)


class TestVerifySignature:
    def test_valid_signature(self, sign, webhook_secrets):
        body = b'{"action": "requested"}'
        assert verify_webhook_signature(body, sign(body), webhook_secrets.values())

    def test_second_app_secret_matches(self, sign, webhook_secrets):
        body = b'{"action": "requested"}'
        signature = sign(body, webhook_secrets["CHIELEPHANT"])
        assert verify_webhook_signature(body, signature, webhook_secrets.values())

    def test_other_secret_only_fails(self, sign, webhook_secrets):
        body = b'{"action": "requested"}'
        signature = sign(body, webhook_secrets["303DEVS"])
        assert not verify_webhook_signature(body, signature, [webhook_secrets["CHIELEPHANT"]])

    def test_tampered_body_fails(self, sign, webhook_secrets):
        signature = sign(b'{"action": "requested"}')
        assert not verify_webhook_signature(
            b'{"action": "completed"}', signature, webhook_secrets.values()
        )

    def test_no_secrets_fails_closed(self, sign):
        body = b"{}"
        assert not verify_webhook_signature(body, sign(body), [])
        assert not verify_webhook_signature(body, sign(body), ["", ""])

    @pytest.mark.parametrize("header", ["", "sha1=deadbeef", "deadbeef"])
    def test_missing_or_malformed_header_fails(self, header, webhook_secrets):
        assert not verify_webhook_signature(b"{}", header, webhook_secrets.values())

    def test_non_ascii_signature_fails(self, webhook_secrets):
        assert not verify_webhook_signature(b"{}", "sha256=éé", webhook_secrets.values())


class TestParseCheckSuiteEvent:
    def test_extracts_fields(self):
        payload = {
            "action": "requested",
            "check_suite": {"head_sha": "abc123"},
            "repository": {"name": "threejs-shirt", "owner": {"login": "303devs"}},
            "installation": {"id": "555"},
        }
        event = parse_check_suite_event(payload)

        assert event.head_sha == "abc123"
        assert event.owner == "303devs"
        assert event.repo == "threejs-shirt"
        assert event.installation_id == 555

    def test_missing_installation_returns_none(self):
        payload = {
            "check_suite": {"head_sha": "abc123"},
            "repository": {"name": "r", "owner": {"login": "o"}},
        }
        assert parse_check_suite_event(payload) is None

    @pytest.mark.parametrize(
        "overrides",
        [
            {"check_suite": "oops"},
            {"check_suite": {"head_sha": 123}},
            {"repository": ["threejs-shirt"]},
            {"repository": {"name": "r", "owner": "303devs"}},
            {"installation": 555},
            {"installation": {"id": "not-a-number"}},
            {"installation": {"id": True}},
            {"installation": {"id": 0}},
            {"installation": {"id": 1.5}},
        ],
    )
    def test_malformed_sections_return_none(self, overrides):
        payload = {
            "check_suite": {"head_sha": "abc123"},
            "repository": {"name": "r", "owner": {"login": "o"}},
            "installation": {"id": 555},
            **overrides,
        }
        assert parse_check_suite_event(payload) is None

    @pytest.mark.parametrize(
        "event,action,expected",
        [
            ("check_suite", "requested", True),
            ("check_suite", "rerequested", False),
            ("check_suite", "completed", False),
            ("check_run", "requested", False),
        ],
    )
    def test_is_check_suite_requested(self, event, action, expected):
        assert is_check_suite_requested(event, {"action": action}) is expected
