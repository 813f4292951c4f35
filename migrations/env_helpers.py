"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without triggering
alembic.context at import time.
"""

from __future__ import annotations

import os

from psycopg2.extensions import parse_dsn
from sqlalchemy.engine import URL, make_url

_DRIVER = "postgresql+psycopg2"


def _with_password(url: URL) -> URL:
    password = os.environ.get("DB_PASSWORD", "")
    if password and not url.password:
        return url.set(password=password)
    return url


def dsn_to_url(dsn: str) -> URL:
    """Convert a libpq key=value DSN into a SQLAlchemy URL.

    A host starting with "/" is a Unix socket directory and travels as a
    query argument, as libpq expects.
    """
    params = parse_dsn(dsn)
    host = params.get("host") or "localhost"
    if host.startswith("/"):
        return URL.create(
            _DRIVER,
            username=params.get("user"),
            password=params.get("password"),
            database=params.get("dbname"),
            query={"host": host},
        )
    return URL.create(
        _DRIVER,
        username=params.get("user"),
        password=params.get("password"),
        host=host,
        port=int(params.get("port") or 5432),
        database=params.get("dbname"),
    )


def get_database_url() -> str:
    """SQLAlchemy URL built from DATABASE_URL (+ DB_PASSWORD when set)."""
    raw = os.environ.get("DATABASE_URL")
    if not raw:
        raise RuntimeError("DATABASE_URL is required to run migrations")

    if "://" not in raw:
        url = dsn_to_url(raw)
    else:
        if raw.startswith("postgres://"):
            raw = "postgresql://" + raw[len("postgres://"):]
        url = make_url(raw)
        if url.drivername == "postgresql":
            url = url.set(drivername=_DRIVER)

    return _with_password(url).render_as_string(hide_password=False)
