"""Database access layer using psycopg2.

Only the conversation log (see infra.message_log) touches the database.

Provides:
- get_conn(): Get a database connection from DATABASE_URL
- txn(): Context manager for short, safe transactions
"""

import os
import re
from contextlib import contextmanager
from typing import Iterator
from urllib.parse import urlsplit

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

_KV_PASSWORD = re.compile(r"(?:^|\s)password\s*=")


def _dsn_has_password(dsn: str) -> bool:
    """True if a libpq key/value DSN or a postgres:// URL carries a password."""
    if "://" in dsn:
        return urlsplit(dsn).password is not None
    return bool(_KV_PASSWORD.search(dsn))


def get_conn() -> PgConnection:
    """Get a new database connection from DATABASE_URL.

    DB_PASSWORD (e.g. mounted from a secret manager) is used when the DSN
    itself has no password.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")

    password = os.environ.get("DB_PASSWORD")
    if password and not _dsn_has_password(dsn):
        return psycopg2.connect(dsn, password=password)
    return psycopg2.connect(dsn)


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Context manager for a short, safe transaction.

    If conn is None, creates a new connection that is closed on exit.
    Commits on successful exit, rolls back on exception.

    Example:
        with txn() as cur:
            cur.execute("INSERT INTO messages (id) VALUES (%s)", ("x",))
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()
