from datetime import date, datetime
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from slotlock.services import email_service, google_calendar
from slotlock.services.email_service import SmtpMailer, build_confirmation_email
from slotlock.services.google_calendar import (
    build_event_body,
    decrypt_token,
    encrypt_token,
    google_busy_provider,
    _extract_meet_link,
    _parse_rfc3339,
)


def _appointment(**overrides):
    values = dict(
        id=7,
        title="Review <draft>",
        start=datetime(2030, 1, 7, 10, 0),
        end=datetime(2030, 1, 7, 10, 30),
        duration=30,
        timezone="Europe/Berlin",
        seller=SimpleNamespace(name="Sam Seller", email="sam@example.com"),
        buyer=SimpleNamespace(name="Alice", email="alice@example.com"),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestTokens:
    def test_round_trip(self):
        encrypted = encrypt_token("refresh-123")
        assert encrypted != "refresh-123"
        assert decrypt_token(encrypted) == "refresh-123"

    def test_empty(self):
        assert encrypt_token(None) is None
        assert decrypt_token("") is None

    def test_garbage_is_none(self):
        assert decrypt_token("not-a-fernet-token") is None


class TestEventBody:
    def test_with_meet(self):
        body = build_event_body(_appointment(), "alice@example.com", "desc", with_meet=True)
        assert body["summary"] == "Review <draft>"
        assert body["start"] == {"dateTime": "2030-01-07T10:00:00", "timeZone": "Europe/Berlin"}
        assert body["attendees"] == [{"email": "alice@example.com"}]
        request = body["conferenceData"]["createRequest"]
        assert request["conferenceSolutionKey"] == {"type": "hangoutsMeet"}
        assert request["requestId"].startswith("meet-7-")

    def test_without_meet_or_attendee(self):
        body = build_event_body(_appointment(), None, "desc")
        assert "conferenceData" not in body
        assert "attendees" not in body

    def test_meet_link_extraction(self):
        assert _extract_meet_link({"hangoutLink": "https://meet/a"}) == "https://meet/a"
        assert _extract_meet_link({"conferenceData": {"entryPoints": [{"uri": "https://meet/b"}]}}) == "https://meet/b"
        assert _extract_meet_link({}) is None


def test_parse_rfc3339_normalizes_to_naive_utc():
    assert _parse_rfc3339("2030-01-07T10:00:00Z") == datetime(2030, 1, 7, 10, 0)
    assert _parse_rfc3339("2030-01-07T12:00:00+02:00") == datetime(2030, 1, 7, 10, 0)


class TestBusyProvider:
    def test_seller_without_tokens(self):
        seller = SimpleNamespace(refresh_token_encrypted=None)
        assert google_busy_provider(seller, date(2030, 1, 7)) == []

    def test_freebusy_query(self):
        seller = SimpleNamespace(refresh_token_encrypted=encrypt_token("refresh-123"))
        service = MagicMock()
        service.freebusy.return_value.query.return_value.execute.return_value = {
            "calendars": {"primary": {"busy": [
                {"start": "2030-01-07T09:00:00Z", "end": "2030-01-07T09:45:00Z"},
            ]}},
        }

        with patch.object(google_calendar, "_get_calendar_service", return_value=service) as factory:
            busy = google_busy_provider(seller, date(2030, 1, 7))

        factory.assert_called_once_with(None, "refresh-123")
        body = service.freebusy.return_value.query.call_args.kwargs["body"]
        assert body["timeMin"] == "2030-01-07T00:00:00Z"
        assert body["timeMax"] == "2030-01-08T00:00:00Z"
        assert busy == [(datetime(2030, 1, 7, 9, 0), datetime(2030, 1, 7, 9, 45))]


class TestEmail:
    def test_confirmation_email_escapes_content(self):
        subject, body = build_confirmation_email(_appointment(), "https://meet.google.com/abc")
        assert subject == "Appointment confirmed: Review <draft>"
        assert "Review &lt;draft&gt;" in body
        assert "https://meet.google.com/abc" in body
        assert "Booking ID: 7" in body

    def test_without_meet_link(self):
        _, body = build_confirmation_email(_appointment(), None)
        assert "Join meeting" not in body

    def test_mailer_configuration(self, monkeypatch):
        monkeypatch.setattr(email_service.settings, "smtp_host", "")
        assert SmtpMailer().is_configured() is False

        monkeypatch.setattr(email_service.settings, "smtp_host", "smtp.example.com")
        monkeypatch.setattr(email_service.settings, "smtp_user", "user")
        monkeypatch.setattr(email_service.settings, "smtp_password", "secret")
        assert SmtpMailer().is_configured() is True

    def test_send_uses_starttls(self, monkeypatch):
        monkeypatch.setattr(email_service.settings, "smtp_host", "smtp.example.com")
        monkeypatch.setattr(email_service.settings, "smtp_port", 587)
        monkeypatch.setattr(email_service.settings, "smtp_user", "user")
        monkeypatch.setattr(email_service.settings, "smtp_password", "secret")

        with patch.object(email_service.smtplib, "SMTP") as smtp:
            SmtpMailer().send("alice@example.com", "Hi", "<p>hello</p>")

        server = smtp.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user", "secret")
        assert server.sendmail.call_args.args[1] == ["alice@example.com"]
