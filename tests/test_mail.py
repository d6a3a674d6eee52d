import smtplib

import pytest

from portal import emailer
from portal.app import db
from portal.models import Settings


@pytest.mark.no_smoke
def test_normalize_recipients_splits_and_dedupes():
    envelope, header = emailer.normalize_recipients(
        ["a@x.edu; B@x.edu", "b@X.edu, not-an-address", ""]
    )
    assert envelope == ["a@x.edu", "B@x.edu"]
    assert header == "a@x.edu, B@x.edu"
    assert emailer.normalize_recipients(None) == ([], "")


def test_stub_mode_without_smtp_config(app):
    res = emailer.send("a@x.edu", "Hello", "body")
    assert res == {"ok": False, "detail": "stub: missing config"}


def test_no_valid_recipients(app, monkeypatch):
    monkeypatch.setenv("SMTP_HOST", "smtp.example.edu")
    monkeypatch.setenv("SMTP_PORT", "25")
    monkeypatch.setenv("SMTP_FROM_DEFAULT", "portal@example.edu")
    res = emailer.send("nobody", "Hello", "body")
    assert res == {"ok": False, "detail": "no valid recipients"}


class FakeSMTP:
    sent = []

    def __init__(self, host, port):
        self.host = host
        self.port = port

    def starttls(self):
        pass

    def login(self, user, password):
        self.credentials = (user, password)

    def send_message(self, msg, from_addr=None, to_addrs=None):
        FakeSMTP.sent.append((msg, from_addr, to_addrs))

    def quit(self):
        pass


def test_settings_row_overrides_env_and_attaches(app, monkeypatch):
    FakeSMTP.sent = []
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    monkeypatch.setenv("SMTP_HOST", "env-host")
    settings = Settings(
        id=1,
        smtp_host="db-host",
        smtp_port=587,
        smtp_from_default="nss@example.edu",
        smtp_from_name="NSS Cell",
    )
    settings.set_smtp_pass("s3cret")
    db.session.add(settings)
    db.session.commit()
    assert Settings.get().get_smtp_pass() == "s3cret"

    res = emailer.send(
        "Student@x.edu",
        "Certificate",
        "See attached",
        html="<p>See attached</p>",
        attachments=[emailer.Attachment("Certificate_A.pdf", b"%PDF-1.4")],
    )

    assert res == {"ok": True, "detail": "sent"}
    msg, from_addr, to_addrs = FakeSMTP.sent[0]
    assert from_addr == "nss@example.edu"
    assert to_addrs == ["Student@x.edu"]
    assert msg["From"] == "NSS Cell <nss@example.edu>"
    filenames = [part.get_filename() for part in msg.iter_attachments()]
    assert filenames == ["Certificate_A.pdf"]


def test_smtp_failure_is_reported(app, monkeypatch):
    class Refusing(FakeSMTP):
        def send_message(self, msg, from_addr=None, to_addrs=None):
            raise smtplib.SMTPRecipientsRefused({"a@x.edu": (550, b"no")})

    monkeypatch.setattr(smtplib, "SMTP", Refusing)
    monkeypatch.setenv("SMTP_HOST", "smtp.example.edu")
    monkeypatch.setenv("SMTP_PORT", "25")
    monkeypatch.setenv("SMTP_FROM_DEFAULT", "portal@example.edu")
    res = emailer.send("a@x.edu", "Hello", "body")
    assert res["ok"] is False
    assert "a@x.edu" in res["detail"]
