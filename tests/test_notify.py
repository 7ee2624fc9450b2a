"""
Tests for the notify module.

Tests cover:
- Embed description and payload formatting
- Webhook delivery and error handling
- Sequential announcements with a pause between messages
- Dry run mode
"""

from unittest.mock import Mock, call, patch

import pytest
import requests

from upi_watcher.notify import (
    EMBED_TITLE,
    NotifyError,
    announce,
    announce_entries,
    build_payload,
    format_description,
    send_webhook,
)
from upi_watcher.parse import Entry, PartnerBank


WEBHOOK_URL = "https://discord.com/api/webhooks/1/token"


@pytest.fixture
def sample_entry():
    """A new entry with two partner banks."""
    return Entry(
        serial_number="12",
        app_name="App A",
        go_live_date="2020-01-01",
        partner_banks=[PartnerBank("Bank X", "@bankx"), PartnerBank("Bank Y", "@banky")],
        reference_link="https://x.com",
    )


@pytest.fixture
def sample_entries(sample_entry):
    return [
        sample_entry,
        Entry(serial_number="13", app_name="App B", go_live_date="2021",
              partner_banks=[PartnerBank("Bank Z", "@bankz")]),
        Entry(serial_number="14", app_name="App C", go_live_date="2022",
              partner_banks=[PartnerBank("Bank W", "@bankw")]),
    ]


def ok_response(status_code=204):
    response = Mock()
    response.status_code = status_code
    response.headers = {}
    return response


class TestFormatDescription:
    """Tests for the embed description."""

    def test_with_https_link(self, sample_entry):
        """Test the full description including the link line."""
        assert format_description(sample_entry) == (
            "Name: **App A**\n"
            "Went live: **2020-01-01**\n"
            "Link: https://x.com\n"
            "\n"
            "**Partner Bank(s):**"
        )

    def test_plain_text_link_omitted(self, sample_entry):
        """Test that non-URL link text is not shown."""
        sample_entry.reference_link = "Not available"

        description = format_description(sample_entry)

        assert "Link:" not in description
        assert description == "Name: **App A**\nWent live: **2020-01-01**\n\n**Partner Bank(s):**"

    def test_http_link_omitted(self, sample_entry):
        """Test that only secure links are shown."""
        sample_entry.reference_link = "http://insecure.example.com"

        assert "Link:" not in format_description(sample_entry)

    def test_missing_values(self):
        """Test that missing fields render as Unknown."""
        entry = Entry(serial_number="5", partner_banks=[PartnerBank(None, None)])

        description = format_description(entry)

        assert "Name: **Unknown**" in description
        assert "Went live: **Unknown**" in description
        assert "Link:" not in description


class TestBuildPayload:
    """Tests for the webhook payload."""

    def test_payload_shape(self, sample_entry):
        """Test the embed structure."""
        payload = build_payload(sample_entry)

        assert payload["content"] is None
        assert len(payload["embeds"]) == 1
        embed = payload["embeds"][0]
        assert embed["title"] == EMBED_TITLE
        assert embed["color"] is None
        assert embed["description"] == format_description(sample_entry)

    def test_one_field_per_bank(self, sample_entry):
        """Test that each partner bank becomes an inline field."""
        fields = build_payload(sample_entry)["embeds"][0]["fields"]

        assert fields == [
            {"name": "Bank X", "value": "@bankx", "inline": True},
            {"name": "Bank Y", "value": "@banky", "inline": True},
        ]

    def test_missing_bank_values(self):
        """Test that missing bank values still produce a valid field."""
        entry = Entry(serial_number="5", partner_banks=[PartnerBank(None, None)])

        fields = build_payload(entry)["embeds"][0]["fields"]

        assert fields == [{"name": "Unknown", "value": "Unknown", "inline": True}]


class TestSendWebhook:
    """Tests for webhook delivery."""

    def test_success(self, sample_entry):
        """Test that a 2xx response is accepted."""
        session = Mock()
        session.post.return_value = ok_response()
        payload = build_payload(sample_entry)

        send_webhook(session, WEBHOOK_URL, payload, timeout=10)

        session.post.assert_called_once_with(WEBHOOK_URL, json=payload, timeout=10)

    def test_rate_limited(self):
        """Test that 429 responses report the retry hint."""
        session = Mock()
        response = ok_response(429)
        response.headers = {"Retry-After": "2"}
        session.post.return_value = response

        with pytest.raises(NotifyError, match="retry after 2s") as exc_info:
            send_webhook(session, WEBHOOK_URL, {})

        assert exc_info.value.status_code == 429

    def test_http_error(self):
        """Test that other non-2xx responses raise."""
        session = Mock()
        session.post.return_value = ok_response(400)

        with pytest.raises(NotifyError, match="HTTP 400"):
            send_webhook(session, WEBHOOK_URL, {})

    def test_timeout(self):
        """Test that timeouts raise NotifyError."""
        session = Mock()
        session.post.side_effect = requests.exceptions.Timeout("timed out")

        with pytest.raises(NotifyError, match="timeout"):
            send_webhook(session, WEBHOOK_URL, {})

    def test_connection_error(self):
        """Test that connection failures raise NotifyError."""
        session = Mock()
        session.post.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(NotifyError, match="request failed"):
            send_webhook(session, WEBHOOK_URL, {})


class TestAnnounce:
    """Tests for announcing a single entry."""

    def test_announce_posts_payload(self, sample_entry):
        """Test that the entry's payload is posted."""
        session = Mock()
        session.post.return_value = ok_response()

        announce(sample_entry, WEBHOOK_URL, session=session)

        assert session.post.call_args.kwargs["json"] == build_payload(sample_entry)
        session.close.assert_not_called()

    def test_dry_run(self, sample_entry):
        """Test that dry run sends nothing."""
        with patch("upi_watcher.notify.requests.Session") as mock_session_class:
            announce(sample_entry, WEBHOOK_URL, dry_run=True)

            mock_session_class.assert_not_called()

    def test_own_session_closed(self, sample_entry):
        """Test that a session created for the call is closed."""
        with patch("upi_watcher.notify.requests.Session") as mock_session_class:
            session = mock_session_class.return_value
            session.post.return_value = ok_response(500)

            with pytest.raises(NotifyError):
                announce(sample_entry, WEBHOOK_URL)

            session.close.assert_called_once()


class TestAnnounceEntries:
    """Tests for sequential announcements."""

    def test_empty(self):
        """Test that nothing is sent for no entries."""
        sleep = Mock()

        assert announce_entries([], WEBHOOK_URL, sleep=sleep) == 0
        sleep.assert_not_called()

    def test_sends_each_entry_with_pause(self, sample_entries):
        """Test one message per entry and a pause between messages."""
        session = Mock()
        session.post.return_value = ok_response()
        sleep = Mock()

        sent = announce_entries(sample_entries, WEBHOOK_URL, delay=1.0, sleep=sleep, session=session)

        assert sent == 3
        assert session.post.call_count == 3
        assert sleep.call_args_list == [call(1.0), call(1.0)]
        posted = [c.kwargs["json"]["embeds"][0]["description"] for c in session.post.call_args_list]
        assert "App A" in posted[0]
        assert "App C" in posted[2]

    def test_failure_aborts_remaining(self, sample_entries):
        """Test that the first failure stops later announcements."""
        session = Mock()
        session.post.side_effect = [ok_response(), ok_response(500), ok_response()]

        with pytest.raises(NotifyError):
            announce_entries(sample_entries, WEBHOOK_URL, sleep=Mock(), session=session)

        assert session.post.call_count == 2

    def test_dry_run_sends_nothing(self, sample_entries):
        """Test that dry run neither posts nor waits."""
        sleep = Mock()

        with patch("upi_watcher.notify.requests.Session") as mock_session_class:
            sent = announce_entries(sample_entries, WEBHOOK_URL, sleep=sleep, dry_run=True)

            mock_session_class.assert_not_called()

        assert sent == 3
        sleep.assert_not_called()

    def test_zero_delay(self, sample_entries):
        """Test that a zero delay never sleeps."""
        session = Mock()
        session.post.return_value = ok_response()
        sleep = Mock()

        announce_entries(sample_entries, WEBHOOK_URL, delay=0, sleep=sleep, session=session)

        sleep.assert_not_called()
