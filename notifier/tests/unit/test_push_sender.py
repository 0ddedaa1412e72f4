"""
Unit tests for WebPushSender.

pywebpush.webpush is patched; no network calls are made.
"""

import json
from unittest.mock import MagicMock

import pytest
from pywebpush import WebPushException

from notifier.src.models import PushSubscription
from notifier.src.services.exceptions import (
    PushDeliveryError,
    PushGoneError,
    PushNotConfiguredError,
)
from notifier.src.services.push_sender import WebPushSender


@pytest.fixture
def subscription():
    return PushSubscription(
        user_id="user-1",
        endpoint="https://push.example.com/sub/1",
        p256dh="test-p256dh",
        auth="test-auth",
    )


@pytest.fixture
def sender():
    return WebPushSender(vapid_private_key="test-private", vapid_subject="mailto:ops@example.com")


@pytest.fixture
def mock_webpush(mocker):
    return mocker.patch("notifier.src.services.push_sender.webpush")


def _push_error(status_code):
    response = MagicMock()
    response.status_code = status_code
    return WebPushException("Push failed", response=response)


class TestSend:
    """Tests for WebPushSender.send."""

    def test_sends_payload_with_vapid(self, sender, subscription, mock_webpush):
        """Should pass subscription keys, JSON payload, VAPID claims and TTL."""
        payload = {"title": "Water the plants", "jobId": "job-1"}

        sender.send(subscription, payload)

        kwargs = mock_webpush.call_args.kwargs
        assert kwargs["subscription_info"] == {
            "endpoint": "https://push.example.com/sub/1",
            "keys": {"p256dh": "test-p256dh", "auth": "test-auth"},
        }
        assert json.loads(kwargs["data"]) == payload
        assert kwargs["vapid_private_key"] == "test-private"
        assert kwargs["vapid_claims"] == {"sub": "mailto:ops@example.com"}
        assert kwargs["ttl"] == 86400

    @pytest.mark.parametrize("status_code", [404, 410])
    def test_gone_subscription(self, sender, subscription, mock_webpush, status_code):
        """Should raise PushGoneError for 404 and 410."""
        mock_webpush.side_effect = _push_error(status_code)
        with pytest.raises(PushGoneError) as exc_info:
            sender.send(subscription, {})
        assert exc_info.value.status_code == status_code
        assert exc_info.value.endpoint == subscription.endpoint

    def test_server_error_is_transient(self, sender, subscription, mock_webpush):
        mock_webpush.side_effect = _push_error(500)
        with pytest.raises(PushDeliveryError) as exc_info:
            sender.send(subscription, {})
        assert not isinstance(exc_info.value, PushGoneError)

    def test_error_without_response_is_transient(self, sender, subscription, mock_webpush):
        mock_webpush.side_effect = WebPushException("connection reset")
        with pytest.raises(PushDeliveryError):
            sender.send(subscription, {})

    def test_unexpected_error_is_transient(self, sender, subscription, mock_webpush):
        mock_webpush.side_effect = ValueError("bad key")
        with pytest.raises(PushDeliveryError):
            sender.send(subscription, {})

    def test_not_configured(self, subscription, mock_webpush):
        sender = WebPushSender(vapid_private_key="", vapid_subject="")
        assert not sender.is_configured
        with pytest.raises(PushNotConfiguredError):
            sender.send(subscription, {})
        mock_webpush.assert_not_called()
