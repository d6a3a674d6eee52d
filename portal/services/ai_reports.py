"""Participation reports drafted by an LLM, with a fixed-template fallback."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from io import BytesIO
from typing import Iterable

import httpx
from flask import current_app
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from ..app import db
from ..models import Participation
from ..shared.time import fmt_long_date

logger = logging.getLogger("portal.ai")

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
TEXT_EXTENSIONS = {".txt", ".md", ".csv"}
MAX_EVIDENCE_CHARS = 4000


@dataclass
class ReportResult:
    success: bool
    report: str
    error: str | None = None


def extract_evidence_text(files: Iterable[tuple[str, bytes]]) -> str:
    parts: list[str] = []
    for filename, data in files:
        ext = os.path.splitext(filename or "")[1].lower()
        if ext == ".pdf":
            try:
                reader = PdfReader(BytesIO(data))
                text = "\n".join((page.extract_text() or "") for page in reader.pages)
            except (PdfReadError, ValueError) as exc:
                logger.info("[AI-REPORT] unreadable pdf %s: %s", filename, exc)
                text = ""
            parts.append(f"[PDF: {filename}]\n{text.strip()}")
        elif ext in TEXT_EXTENSIONS:
            parts.append(f"[Text: {filename}]\n{data.decode('utf-8', errors='replace').strip()}")
        elif ext in IMAGE_EXTENSIONS:
            parts.append(f"[Image: {filename}]")
        else:
            parts.append(f"[File: {filename}]")
    return "\n\n".join(parts)[:MAX_EVIDENCE_CHARS]


def build_prompt(participation: Participation, submission_text: str, evidence: str) -> str:
    event = participation.event
    student = participation.student
    return (
        "Write a concise volunteer activity report (about 250 words) for a "
        "campus service scheme record.\n\n"
        f"Student: {student.name} ({student.registration_number}, "
        f"{student.department}, year {student.year})\n"
        f"Event: {event.title} ({event.event_type})\n"
        f"Location: {event.location}\n"
        f"Date: {fmt_long_date(event.start_date)}\n"
        f"Hours awarded: {event.hours_awarded}\n\n"
        f"Student's description:\n{submission_text or '(none)'}\n\n"
        f"Evidence summary:\n{evidence or '(none)'}\n\n"
        "Cover the activities performed, the impact on the community and what "
        "the student learned."
    )


def fallback_report(participation: Participation, submission_text: str) -> str:
    event = participation.event
    student = participation.student
    return (
        f"Volunteer Activity Report\n\n"
        f"Student: {student.name} ({student.registration_number})\n"
        f"Department: {student.department}, Year {student.year}\n"
        f"Event: {event.title}\n"
        f"Type: {event.event_type}\n"
        f"Location: {event.location}\n"
        f"Date: {fmt_long_date(event.start_date)}\n"
        f"Volunteer hours: {participation.volunteer_hours or event.hours_awarded}\n\n"
        f"Activity summary:\n{submission_text or 'No description was submitted.'}\n\n"
        f"{student.name} took part in {event.title} at {event.location} and "
        f"contributed to the community through this {event.event_type} activity."
    )


def _call_provider(prompt: str) -> str:
    cfg = current_app.config
    api_key = cfg.get("AI_API_KEY")
    if not api_key:
        raise RuntimeError("AI provider not configured")
    resp = httpx.post(
        cfg["AI_API_URL"],
        headers={
            "x-api-key": api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        },
        json={
            "model": cfg["AI_MODEL"],
            "max_tokens": 1024,
            "messages": [{"role": "user", "content": prompt}],
        },
        timeout=cfg.get("AI_TIMEOUT_SECONDS", 30.0),
    )
    resp.raise_for_status()
    data = resp.json()
    try:
        text = "".join(
            block.get("text", "")
            for block in data["content"]
            if isinstance(block, dict) and block.get("type") == "text"
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"unexpected response shape: {exc}") from exc
    if not text.strip():
        raise ValueError("empty completion")
    return text.strip()


def generate_participation_report(
    participation: Participation,
    submission_text: str | None = None,
    files: Iterable[tuple[str, bytes]] = (),
) -> ReportResult:
    submission_text = (submission_text or participation.submission_text or "").strip()
    evidence = extract_evidence_text(files)
    prompt = build_prompt(participation, submission_text, evidence)
    try:
        result = ReportResult(success=True, report=_call_provider(prompt))
        logger.info("[AI-REPORT] participation=%s source=provider", participation.id)
    except (httpx.HTTPError, RuntimeError, ValueError) as exc:
        logger.warning(
            "[AI-REPORT] participation=%s source=fallback error=%s", participation.id, exc
        )
        result = ReportResult(
            success=False,
            report=fallback_report(participation, submission_text),
            error=str(exc),
        )
    participation.submission_text = submission_text or participation.submission_text
    participation.ai_generated_report = result.report
    db.session.commit()
    return result
