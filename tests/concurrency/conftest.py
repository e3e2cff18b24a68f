"""
Concurrency fixtures.

Threads need connections of their own, so these tests run against a file
SQLite database in tmp_path (or DATABASE_URL when set) instead of the
shared in-memory one.
"""

import os

import pytest

from voucher_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)


@pytest.fixture
def db_engine(tmp_path):
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'concurrency.db'}"
    eng = init_engine_from_url(url, pool_timeout=30)
    drop_tables()
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def on_postgres(db_engine) -> bool:
    return is_postgres()
