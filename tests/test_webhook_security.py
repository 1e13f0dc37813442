"""Tests for webhook secret and source network checks."""

import pytest

from topicbridge.security.webhook_security import get_client_ip, is_telegram_ip, verify_webhook_secret


class TestVerifyWebhookSecret:

    def test_matching_secret(self):
        assert verify_webhook_secret("s3cret", "s3cret") is True

    def test_wrong_secret(self):
        assert verify_webhook_secret("guess", "s3cret") is False

    def test_missing_header(self):
        assert verify_webhook_secret(None, "s3cret") is False

    def test_no_secret_configured(self):
        assert verify_webhook_secret(None, "") is True


class TestTelegramNetworks:

    @pytest.mark.parametrize("ip", ["149.154.160.1", "149.154.175.254", "91.108.4.10", "91.108.7.255"])
    def test_inside(self, ip):
        assert is_telegram_ip(ip) is True

    @pytest.mark.parametrize("ip", ["8.8.8.8", "149.154.176.1", "91.108.8.1", "not-an-ip"])
    def test_outside(self, ip):
        assert is_telegram_ip(ip) is False


class TestClientIp:

    def test_forwarded_for_wins(self):
        assert get_client_ip("149.154.160.5, 10.0.0.1", "10.0.0.2", "127.0.0.1") == "149.154.160.5"

    def test_real_ip_then_peer(self):
        assert get_client_ip(None, " 10.0.0.2 ", "127.0.0.1") == "10.0.0.2"
        assert get_client_ip(None, None, "127.0.0.1") == "127.0.0.1"
