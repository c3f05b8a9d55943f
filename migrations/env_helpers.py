"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without alembic.context.
DATABASE_URL is shared with the psycopg2 message log, so it may be either a
URL or a libpq key=value DSN.
"""

from __future__ import annotations

import os
import re
from urllib.parse import quote_plus, urlparse, urlunparse

DRIVER_SCHEME = "postgresql+psycopg2://"

# key=value or key='quoted value' (backslash escapes inside quotes)
_DSN_PAIR = re.compile(r"(\w+)\s*=\s*('(?:\\.|[^'\\])*'|\S*)")
_DSN_ESCAPE = re.compile(r"\\(.)")


def parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse a libpq key=value DSN into a dict."""
    params: dict[str, str] = {}
    for key, raw in _DSN_PAIR.findall(dsn):
        if raw.startswith("'") and raw.endswith("'") and len(raw) >= 2:
            raw = _DSN_ESCAPE.sub(r"\1", raw[1:-1])
        params[key] = raw
    return params


def libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq DSN to a SQLAlchemy URL (TCP host or unix socket)."""
    params = parse_libpq_dsn(dsn)
    password = params.get("password") or os.environ.get("DB_PASSWORD", "")

    credentials = quote_plus(params.get("user", ""))
    if password:
        credentials += f":{quote_plus(password)}"
    dbname = quote_plus(params.get("dbname", ""))
    host = params.get("host", "localhost")

    if host.startswith("/"):
        return f"{DRIVER_SCHEME}{credentials}@/{dbname}?host={quote_plus(host)}"
    return f"{DRIVER_SCHEME}{credentials}@{host}:{params.get('port', '5432')}/{dbname}"


def _with_driver(url: str) -> str:
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            return DRIVER_SCHEME + url[len(scheme):]
    return url


def _with_password(url: str, password: str) -> str:
    parsed = urlparse(url)
    if parsed.password or not parsed.hostname:
        return url
    netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return libpq_dsn_to_url(url)

    url = _with_driver(url)
    db_password = os.environ.get("DB_PASSWORD", "")
    return _with_password(url, db_password) if db_password else url
