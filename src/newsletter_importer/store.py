"""SQLite persistence for accounts, imported newsletters and the domain whitelist."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from . import constants
from .errors import AccountInUse, PersistenceFailure
from .models import EmailAccount, Newsletter, utcnow

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS email_accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    provider TEXT NOT NULL,
    email TEXT NOT NULL,
    access_token TEXT NOT NULL,
    refresh_token TEXT NOT NULL,
    token_expires_at TEXT,
    last_synced_at TEXT,
    sync_enabled INTEGER NOT NULL DEFAULT 1,
    newsletter_mode INTEGER NOT NULL DEFAULT 0,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS newsletters (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    email_account_id INTEGER NOT NULL,
    message_id TEXT NOT NULL,
    sender TEXT NOT NULL,
    sender_email TEXT NOT NULL,
    subject TEXT NOT NULL,
    content TEXT NOT NULL,
    html_content TEXT,
    received_at TEXT,
    created_at TEXT,
    UNIQUE (email_account_id, message_id),
    FOREIGN KEY (email_account_id) REFERENCES email_accounts(id)
);

CREATE TABLE IF NOT EXISTS domain_whitelist (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    domain TEXT NOT NULL,
    created_at TEXT,
    UNIQUE (user_id, domain)
);
"""


def _to_text(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_text(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_account(row: sqlite3.Row) -> EmailAccount:
    return EmailAccount(
        id=row["id"],
        user_id=row["user_id"],
        provider=row["provider"],
        email=row["email"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        token_expires_at=_from_text(row["token_expires_at"]),
        last_synced_at=_from_text(row["last_synced_at"]),
        sync_enabled=bool(row["sync_enabled"]),
        newsletter_mode=bool(row["newsletter_mode"]),
    )


def _row_to_newsletter(row: sqlite3.Row) -> Newsletter:
    return Newsletter(
        id=row["id"],
        user_id=row["user_id"],
        email_account_id=row["email_account_id"],
        message_id=row["message_id"],
        sender=row["sender"],
        sender_email=row["sender_email"],
        subject=row["subject"],
        content=row["content"],
        html_content=row["html_content"] or "",
        received_at=_from_text(row["received_at"]),
        created_at=_from_text(row["created_at"]),
    )


class NewsletterStore:
    """Persistent SQLite store.

    Newsletter inserts are idempotent: a unique key on
    (email_account_id, message_id) turns a second insert of the same
    message into a no-op, so overlapping syncs cannot duplicate rows.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = Path(db_path or constants.DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(_CREATE_TABLES_SQL)

    # --- accounts ---

    def add_account(self, account: EmailAccount) -> EmailAccount:
        """Insert a new account and return it with its assigned id."""
        with self._conn:
            cursor = self._conn.execute(
                "INSERT INTO email_accounts (user_id, provider, email, access_token, refresh_token, "
                "token_expires_at, last_synced_at, sync_enabled, newsletter_mode, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    account.user_id,
                    account.provider,
                    account.email,
                    account.access_token,
                    account.refresh_token,
                    _to_text(account.token_expires_at),
                    _to_text(account.last_synced_at),
                    int(account.sync_enabled),
                    int(account.newsletter_mode),
                    _to_text(utcnow()),
                ),
            )
        account.id = cursor.lastrowid
        return account

    def get_account(self, account_id: int) -> EmailAccount | None:
        row = self._conn.execute("SELECT * FROM email_accounts WHERE id = ?", (account_id,)).fetchone()
        return _row_to_account(row) if row else None

    def list_accounts(self, enabled_only: bool = False) -> list[EmailAccount]:
        sql = "SELECT * FROM email_accounts"
        if enabled_only:
            sql += " WHERE sync_enabled = 1"
        rows = self._conn.execute(sql + " ORDER BY id").fetchall()
        return [_row_to_account(r) for r in rows]

    def update_tokens(
        self,
        account_id: int,
        access_token: str,
        expires_at: datetime | None,
        refresh_token: str | None = None,
    ) -> None:
        with self._conn:
            if refresh_token:
                self._conn.execute(
                    "UPDATE email_accounts SET access_token = ?, token_expires_at = ?, refresh_token = ? "
                    "WHERE id = ?",
                    (access_token, _to_text(expires_at), refresh_token, account_id),
                )
            else:
                self._conn.execute(
                    "UPDATE email_accounts SET access_token = ?, token_expires_at = ? WHERE id = ?",
                    (access_token, _to_text(expires_at), account_id),
                )

    def mark_synced(self, account_id: int, when: datetime | None = None) -> datetime:
        when = when or utcnow()
        with self._conn:
            self._conn.execute(
                "UPDATE email_accounts SET last_synced_at = ? WHERE id = ?",
                (_to_text(when), account_id),
            )
        return when

    def set_sync_enabled(self, account_id: int, enabled: bool) -> None:
        with self._conn:
            self._conn.execute(
                "UPDATE email_accounts SET sync_enabled = ? WHERE id = ?", (int(enabled), account_id)
            )

    def set_newsletter_mode(self, account_id: int, enabled: bool) -> None:
        with self._conn:
            self._conn.execute(
                "UPDATE email_accounts SET newsletter_mode = ? WHERE id = ?", (int(enabled), account_id)
            )

    def delete_account(self, account_id: int, delete_newsletters: bool = False) -> None:
        """Delete an account.

        Refuses while newsletters still reference it, unless
        *delete_newsletters* is set.
        """
        count = self._conn.execute(
            "SELECT COUNT(*) AS c FROM newsletters WHERE email_account_id = ?", (account_id,)
        ).fetchone()["c"]
        if count and not delete_newsletters:
            raise AccountInUse(account_id, count)
        with self._conn:
            self._conn.execute("DELETE FROM newsletters WHERE email_account_id = ?", (account_id,))
            self._conn.execute("DELETE FROM email_accounts WHERE id = ?", (account_id,))

    # --- newsletters ---

    def insert_newsletter(self, newsletter: Newsletter) -> bool:
        """Insert a newsletter unless one with the same account and message id exists.

        Returns True when a row was written, False when it already existed.
        Raises PersistenceFailure on database errors.
        """
        try:
            with self._conn:
                cursor = self._conn.execute(
                    "INSERT INTO newsletters (user_id, email_account_id, message_id, sender, sender_email, "
                    "subject, content, html_content, received_at, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT (email_account_id, message_id) DO NOTHING",
                    (
                        newsletter.user_id,
                        newsletter.email_account_id,
                        newsletter.message_id,
                        newsletter.sender,
                        newsletter.sender_email,
                        newsletter.subject,
                        newsletter.content,
                        newsletter.html_content,
                        _to_text(newsletter.received_at),
                        _to_text(newsletter.created_at),
                    ),
                )
        except sqlite3.Error as exc:
            raise PersistenceFailure(newsletter.message_id, str(exc)) from exc
        if cursor.rowcount:
            newsletter.id = cursor.lastrowid
            return True
        return False

    def has_newsletter(self, account_id: int, message_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM newsletters WHERE email_account_id = ? AND message_id = ?",
            (account_id, message_id),
        ).fetchone()
        return row is not None

    def list_newsletters(self, account_id: int | None = None) -> list[Newsletter]:
        if account_id is None:
            rows = self._conn.execute("SELECT * FROM newsletters ORDER BY id").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM newsletters WHERE email_account_id = ? ORDER BY id", (account_id,)
            ).fetchall()
        return [_row_to_newsletter(r) for r in rows]

    def imported_counts(self, account_id: int) -> dict[str, int]:
        """Return the number of imported newsletters per sender address."""
        rows = self._conn.execute(
            "SELECT sender_email, COUNT(*) AS c FROM newsletters "
            "WHERE email_account_id = ? AND sender_email != '' "
            "GROUP BY sender_email ORDER BY c DESC, sender_email",
            (account_id,),
        ).fetchall()
        return {r["sender_email"]: r["c"] for r in rows}

    # --- domain whitelist ---

    def add_whitelisted_domain(self, user_id: int, domain: str) -> bool:
        with self._conn:
            cursor = self._conn.execute(
                "INSERT INTO domain_whitelist (user_id, domain, created_at) VALUES (?, ?, ?) "
                "ON CONFLICT (user_id, domain) DO NOTHING",
                (user_id, domain.strip().lower(), _to_text(utcnow())),
            )
        return bool(cursor.rowcount)

    def remove_whitelisted_domain(self, user_id: int, domain: str) -> bool:
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM domain_whitelist WHERE user_id = ? AND domain = ?",
                (user_id, domain.strip().lower()),
            )
        return bool(cursor.rowcount)

    def list_whitelisted_domains(self, user_id: int) -> list[str]:
        rows = self._conn.execute(
            "SELECT domain FROM domain_whitelist WHERE user_id = ? ORDER BY domain", (user_id,)
        ).fetchall()
        return [r["domain"] for r in rows]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # --- context manager ---

    def __enter__(self) -> NewsletterStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()
