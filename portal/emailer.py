import json
import logging
import os
import re
import smtplib
import sys
from email.message import EmailMessage
from typing import NamedTuple, Sequence

logger = logging.getLogger("portal.mailer")
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    logger.addHandler(handler)
logger.setLevel(logging.INFO)


class Attachment(NamedTuple):
    filename: str
    content: bytes
    mimetype: str = "application/pdf"


_ADDRESS_RE = re.compile(r"^[^@\s<>]+@[^@\s<>]+\.[^@\s<>]+$")


def normalize_recipients(recipients: Sequence[str] | str | None) -> tuple[list[str], str]:
    """Split, validate and de-duplicate (case-insensitively) recipient addresses.

    Returns the SMTP envelope list and the ``To`` header value.
    """
    if recipients is None:
        return [], ""
    if isinstance(recipients, str):
        recipients = [recipients]
    tokens = [t.strip() for r in recipients for t in re.split(r"[;,]", str(r or ""))]
    kept: list[str] = []
    seen: set[str] = set()
    for address in filter(None, tokens):
        if not _ADDRESS_RE.match(address):
            logger.warning("[MAIL-INVALID-RECIPIENT] token=%s", address)
            continue
        if address.lower() in seen:
            continue
        seen.add(address.lower())
        kept.append(address)
    return kept, ", ".join(kept)


def _smtp_config() -> dict:
    from .models import Settings  # local import to avoid circular import at module load

    settings = Settings.get()

    def pick(attr: str, env: str, default=None):
        value = getattr(settings, attr, None) if settings else None
        return value if value else os.getenv(env, default)

    password = settings.get_smtp_pass() if settings else None
    return {
        "host": pick("smtp_host", "SMTP_HOST"),
        "port": pick("smtp_port", "SMTP_PORT"),
        "user": pick("smtp_user", "SMTP_USER"),
        "from_addr": pick("smtp_from_default", "SMTP_FROM_DEFAULT"),
        "from_name": pick("smtp_from_name", "SMTP_FROM_NAME", ""),
        "password": password or os.getenv("SMTP_PASS"),
    }


def send(
    recipients: Sequence[str] | str | None,
    subject: str,
    body: str,
    html: str | None = None,
    attachments: Sequence[Attachment] | None = None,
):
    cfg = _smtp_config()
    envelope, header = normalize_recipients(recipients)
    attachments = list(attachments or [])
    log_args = (header, json.dumps(envelope), subject, cfg["host"], len(attachments))

    if not cfg["host"] or not cfg["port"] or not cfg["from_addr"]:
        logger.info(
            "[MAIL-OUT] mode=stub to_header=%s envelope=%s subject=\"%s\" host=%s attachments=%s result=stub",
            *log_args,
        )
        return {"ok": False, "detail": "stub: missing config"}

    if not envelope:
        logger.warning("[MAIL-NO-RECIPIENTS] subject=\"%s\" host=%s", subject, cfg["host"])
        return {"ok": False, "detail": "no valid recipients"}

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["To"] = header
    from_addr = cfg["from_addr"]
    msg["From"] = f"{cfg['from_name']} <{from_addr}>" if cfg["from_name"] else from_addr
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")
    for item in attachments:
        maintype, _, subtype = item.mimetype.partition("/")
        msg.add_attachment(
            item.content,
            maintype=maintype,
            subtype=subtype or "octet-stream",
            filename=item.filename,
        )

    try:
        port_int = int(cfg["port"])
        if port_int == 465:
            server = smtplib.SMTP_SSL(cfg["host"], port_int)
        else:
            server = smtplib.SMTP(cfg["host"], port_int)
            if port_int == 587:
                server.starttls()
        try:
            if cfg["user"] and cfg["password"]:
                server.login(cfg["user"], cfg["password"])
            server.send_message(msg, from_addr=from_addr, to_addrs=envelope)
        finally:
            server.quit()
    except (smtplib.SMTPException, OSError, ValueError) as e:
        logger.info(
            "[MAIL-OUT] mode=real to_header=%s envelope=%s subject=\"%s\" host=%s attachments=%s result=%s",
            *log_args,
            e,
        )
        return {"ok": False, "detail": str(e)}
    logger.info(
        "[MAIL-OUT] mode=real to_header=%s envelope=%s subject=\"%s\" host=%s attachments=%s result=sent",
        *log_args,
    )
    return {"ok": True, "detail": "sent"}
