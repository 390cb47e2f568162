"""Export domain previews or imported newsletters to CSV or JSON."""

import csv
import json

from .models import DomainPreview, Newsletter


def _preview_rows(previews: list[DomainPreview]) -> list[dict]:
    return [
        {
            "domain": p.domain,
            "message_count": p.message_count,
            "sample_subject": p.sample.subject,
            "sample_sender": p.sample.sender,
            "sample_sender_email": p.sample.sender_email,
            "sample_date": p.sample.date.isoformat() if p.sample.date else "",
            "score": p.sample.score,
            "confidence": p.sample.confidence,
        }
        for p in previews
    ]


def _newsletter_rows(newsletters: list[Newsletter]) -> list[dict]:
    return [
        {
            "id": n.id,
            "email_account_id": n.email_account_id,
            "message_id": n.message_id,
            "sender": n.sender,
            "sender_email": n.sender_email,
            "subject": n.subject,
            "received_at": n.received_at.isoformat() if n.received_at else "",
            "created_at": n.created_at.isoformat() if n.created_at else "",
        }
        for n in newsletters
    ]


def _write(rows: list[dict], fieldnames: list[str], format: str, output_path: str) -> None:
    if format == "csv":
        with open(output_path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames)
            writer.writeheader()
            writer.writerows(rows)
    elif format == "json":
        with open(output_path, "w") as f:
            json.dump(rows, f, indent=2)
    else:
        raise ValueError(f"unknown export format: {format!r}")


def export_previews(previews: list[DomainPreview], format: str, output_path: str) -> int:
    """Write domain previews to *output_path*.  Returns the number of rows."""
    rows = _preview_rows(previews)
    fieldnames = [
        "domain",
        "message_count",
        "sample_subject",
        "sample_sender",
        "sample_sender_email",
        "sample_date",
        "score",
        "confidence",
    ]
    _write(rows, fieldnames, format, output_path)
    return len(rows)


def export_newsletters(newsletters: list[Newsletter], format: str, output_path: str) -> int:
    """Write imported newsletter metadata (without bodies) to *output_path*."""
    rows = _newsletter_rows(newsletters)
    fieldnames = [
        "id",
        "email_account_id",
        "message_id",
        "sender",
        "sender_email",
        "subject",
        "received_at",
        "created_at",
    ]
    _write(rows, fieldnames, format, output_path)
    return len(rows)
