import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from portal import emailer
from portal.app import create_app, db


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "slow" in item.keywords or "quarantine" in item.keywords:
            continue
        item.add_marker("full")
        if "no_smoke" in item.keywords:
            continue
        item.add_marker("smoke")


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    for key in ("SMTP_HOST", "SMTP_PORT", "SMTP_FROM_DEFAULT", "AI_API_KEY"):
        monkeypatch.delenv(key, raising=False)
    application = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "FLASK_SKIP_SEED": True,
            "SITE_ROOT": str(tmp_path),
            "UPLOAD_ROOT": str(tmp_path / "uploads"),
            "CERTIFICATE_SEND_DELAY": 0,
            "AI_API_KEY": None,
        }
    )
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def outbox(monkeypatch):
    """Capture outgoing mail; every send succeeds."""
    sent = []

    def fake_send(recipients, subject, body, html=None, attachments=None):
        sent.append(
            {
                "to": recipients,
                "subject": subject,
                "body": body,
                "html": html,
                "attachments": list(attachments or []),
            }
        )
        return {"ok": True, "detail": "sent"}

    monkeypatch.setattr(emailer, "send", fake_send)
    return sent
