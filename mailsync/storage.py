"""
SQLite storage for synchronized mail.
Handles persistence of principals, Google accounts, emails, attachments and
sync logs.
"""

import sqlite3
import json
import logging
from typing import List, Dict, Any, Optional, Tuple
from datetime import datetime, timezone
from pathlib import Path
from contextlib import contextmanager

from .models import MessageRecord, StoredAttachment

logger = logging.getLogger(__name__)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO timestamp; naive values are treated as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class EmailStorage:
    """
    SQLite-based storage for synchronized mail.

    A new connection is opened per operation, so one instance can be shared
    by concurrent sync runs running in worker threads.
    """

    def __init__(self, db_path: str = "mailsync.db"):
        """
        Initialize email storage.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._init_database()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with context management."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            raise e
        finally:
            conn.close()

    def _init_database(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS principals (
                    id TEXT PRIMARY KEY,
                    email TEXT UNIQUE,
                    name TEXT,
                    last_email_sync TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # OAuth grants, written by the authentication layer
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    principal_id TEXT NOT NULL,
                    provider TEXT NOT NULL DEFAULT 'google',
                    provider_account_id TEXT NOT NULL,
                    access_token TEXT,
                    refresh_token TEXT,
                    expires_at INTEGER,
                    scope TEXT,
                    FOREIGN KEY (principal_id) REFERENCES principals(id) ON DELETE CASCADE,
                    UNIQUE(provider, provider_account_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS emails (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id TEXT NOT NULL UNIQUE,
                    thread_id TEXT NOT NULL,
                    principal_id TEXT NOT NULL,
                    subject TEXT,
                    sender TEXT NOT NULL,
                    recipients TEXT NOT NULL DEFAULT '[]',
                    cc_recipients TEXT NOT NULL DEFAULT '[]',
                    body_text TEXT,
                    body_html TEXT,
                    snippet TEXT,
                    received_at TEXT NOT NULL,
                    is_read INTEGER DEFAULT 0,
                    labels TEXT NOT NULL DEFAULT '[]',
                    attachment_links TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (principal_id) REFERENCES principals(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS attachments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email_id INTEGER NOT NULL,
                    file_name TEXT NOT NULL,
                    mime_type TEXT NOT NULL,
                    file_size INTEGER,
                    drive_file_id TEXT NOT NULL,
                    drive_link TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (email_id) REFERENCES emails(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sync_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    principal_id TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    status TEXT NOT NULL CHECK (status IN ('running', 'success', 'failed')),
                    total_count INTEGER DEFAULT 0,
                    success_count INTEGER DEFAULT 0,
                    error_count INTEGER DEFAULT 0,
                    error_message TEXT,
                    FOREIGN KEY (principal_id) REFERENCES principals(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_emails_principal ON emails(principal_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_attachments_email ON attachments(email_id)")

    # ==================== Principal Methods ====================

    def add_principal(
        self,
        principal_id: str,
        email: Optional[str] = None,
        name: Optional[str] = None
    ) -> str:
        """Add a principal if it does not exist. Returns the principal id."""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR IGNORE INTO principals (id, email, name)
                VALUES (?, ?, ?)
            """, (principal_id, email, name))
        return principal_id

    def get_principal(self, principal_id: str) -> Optional[Dict[str, Any]]:
        """Get principal by id."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM principals WHERE id = ?", (principal_id,))
            row = cursor.fetchone()
            return dict(row) if row else None

    def get_all_principals(self, with_account_only: bool = False) -> List[Dict[str, Any]]:
        """Get all principals, optionally only those with a Google access token."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            if with_account_only:
                cursor.execute("""
                    SELECT DISTINCT p.* FROM principals p
                    JOIN accounts a ON a.principal_id = p.id
                    WHERE a.provider = 'google' AND a.access_token IS NOT NULL
                    ORDER BY p.id
                """)
            else:
                cursor.execute("SELECT * FROM principals ORDER BY id")
            return [dict(row) for row in cursor.fetchall()]

    def get_last_sync(self, principal_id: str) -> Optional[datetime]:
        """Get the stored checkpoint for a principal."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT last_email_sync FROM principals WHERE id = ?", (principal_id,))
            row = cursor.fetchone()
            if not row:
                return None
            return parse_timestamp(row['last_email_sync'])

    def set_last_sync(self, principal_id: str, timestamp: datetime) -> bool:
        """Overwrite the checkpoint for a principal."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "UPDATE principals SET last_email_sync = ? WHERE id = ?",
                (timestamp.isoformat(), principal_id)
            )
            return cursor.rowcount > 0

    # ==================== Account Methods ====================

    def save_account(
        self,
        principal_id: str,
        provider_account_id: str,
        access_token: Optional[str],
        refresh_token: Optional[str] = None,
        expires_at: Optional[int] = None,
        scope: Optional[str] = None,
        provider: str = 'google'
    ) -> int:
        """Insert or replace an OAuth account for a principal."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO accounts (
                    principal_id, provider, provider_account_id,
                    access_token, refresh_token, expires_at, scope
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(provider, provider_account_id) DO UPDATE SET
                    principal_id = excluded.principal_id,
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    expires_at = excluded.expires_at,
                    scope = excluded.scope
            """, (
                principal_id, provider, provider_account_id,
                access_token, refresh_token, expires_at, scope
            ))
            cursor.execute(
                "SELECT id FROM accounts WHERE provider = ? AND provider_account_id = ?",
                (provider, provider_account_id)
            )
            return cursor.fetchone()['id']

    def get_account(self, principal_id: str, provider: str = 'google') -> Optional[Dict[str, Any]]:
        """Get the first account of a provider for a principal."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM accounts
                WHERE principal_id = ? AND provider = ?
                ORDER BY id LIMIT 1
            """, (principal_id, provider))
            row = cursor.fetchone()
            return dict(row) if row else None

    # ==================== Email Methods ====================

    def _email_from_row(self, row: sqlite3.Row) -> Dict[str, Any]:
        email = dict(row)
        for key in ('recipients', 'cc_recipients', 'labels', 'attachment_links'):
            email[key] = json.loads(email[key]) if email.get(key) else []
        email['is_read'] = bool(email.get('is_read'))
        return email

    def get_email_by_message_id(self, message_id: str) -> Optional[Dict[str, Any]]:
        """Get an email by its provider message id."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM emails WHERE message_id = ?", (message_id,))
            row = cursor.fetchone()
            return self._email_from_row(row) if row else None

    def insert_email(self, record: MessageRecord) -> Tuple[Dict[str, Any], bool]:
        """
        Insert an email unless its message id is already stored.

        Returns:
            (email row, created). A UNIQUE violation from a concurrent insert
            returns the existing row with created=False.
        """
        existing = self.get_email_by_message_id(record.message_id)
        if existing:
            return existing, False

        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO emails (
                        message_id, thread_id, principal_id, subject, sender,
                        recipients, cc_recipients, body_text, body_html, snippet,
                        received_at, is_read, labels, attachment_links
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, '[]')
                """, (
                    record.message_id,
                    record.thread_id,
                    record.principal_id,
                    record.subject,
                    record.sender,
                    json.dumps(list(record.recipients)),
                    json.dumps(list(record.cc_recipients)),
                    record.body_text,
                    record.body_html,
                    record.snippet,
                    record.received_at.isoformat(),
                    int(record.is_read),
                    json.dumps(list(record.labels)),
                ))
        except sqlite3.IntegrityError:
            existing = self.get_email_by_message_id(record.message_id)
            if existing is None:
                raise
            logger.debug(f"Email {record.message_id} inserted concurrently, using existing row")
            return existing, False

        return self.get_email_by_message_id(record.message_id), True

    def add_attachment(self, email_id: int, attachment: StoredAttachment) -> int:
        """Store an offloaded attachment for an email."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO attachments (
                    email_id, file_name, mime_type, file_size, drive_file_id, drive_link
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, (
                email_id,
                attachment.file_name,
                attachment.mime_type,
                attachment.file_size,
                attachment.drive_file_id,
                attachment.drive_link,
            ))
            return cursor.lastrowid

    def update_attachment_links(self, email_id: int, links: List[str]) -> None:
        """Set the attachment links of an email."""
        with self._get_connection() as conn:
            conn.execute("""
                UPDATE emails
                SET attachment_links = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
            """, (json.dumps(list(links)), email_id))

    def get_attachments(self, email_id: int) -> List[Dict[str, Any]]:
        """Get stored attachments for an email."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM attachments WHERE email_id = ? ORDER BY id",
                (email_id,)
            )
            return [dict(row) for row in cursor.fetchall()]

    def get_emails(self, principal_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Get a principal's emails, newest first."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM emails
                WHERE principal_id = ?
                ORDER BY received_at DESC
                LIMIT ?
            """, (principal_id, limit))
            return [self._email_from_row(row) for row in cursor.fetchall()]

    def delete_email(self, email_id: int) -> bool:
        """Delete an email and its attachment rows."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM emails WHERE id = ?", (email_id,))
            return cursor.rowcount > 0

    # ==================== Sync Log Methods ====================

    def start_sync_log(self, principal_id: str) -> int:
        """Start a new sync log entry."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO sync_log (principal_id, started_at, status)
                VALUES (?, ?, 'running')
            """, (principal_id, _utcnow()))
            return cursor.lastrowid

    def complete_sync_log(
        self,
        log_id: int,
        status: str,
        total_count: int = 0,
        success_count: int = 0,
        error_count: int = 0,
        error: Optional[str] = None
    ) -> None:
        """Complete a sync log entry."""
        with self._get_connection() as conn:
            conn.execute("""
                UPDATE sync_log
                SET completed_at = ?, status = ?, total_count = ?,
                    success_count = ?, error_count = ?, error_message = ?
                WHERE id = ?
            """, (_utcnow(), status, total_count, success_count, error_count, error, log_id))

    def get_sync_history(
        self,
        principal_id: Optional[str] = None,
        limit: int = 20
    ) -> List[Dict[str, Any]]:
        """Get sync history."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            query = "SELECT * FROM sync_log"
            params = []

            if principal_id is not None:
                query += " WHERE principal_id = ?"
                params.append(principal_id)

            query += " ORDER BY started_at DESC, id DESC LIMIT ?"
            params.append(limit)

            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    # ==================== Statistics ====================

    def get_email_stats(self, principal_id: Optional[str] = None) -> Dict[str, Any]:
        """Get email and attachment counts."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            where = "WHERE e.principal_id = ?" if principal_id else ""
            params = (principal_id,) if principal_id else ()
            cursor.execute(f"""
                SELECT
                    COUNT(DISTINCT e.id) as total_emails,
                    COUNT(DISTINCT CASE WHEN e.is_read = 0 THEN e.id END) as unread_count,
                    COUNT(a.id) as attachment_count
                FROM emails e
                LEFT JOIN attachments a ON a.email_id = e.id
                {where}
            """, params)
            return dict(cursor.fetchone())
