"""Tests for the shared in-memory test database."""

import threading

from sqlalchemy import text

from tests.fakes import make_device


def test_database_is_shared_across_threads(engine, db_session):
    make_device(db_session)
    counts = []

    def worker():
        with engine.connect() as conn:
            counts.append(conn.scalar(text("SELECT count(*) FROM devices")))

    t = threading.Thread(target=worker)
    t.start()
    t.join(5)

    assert counts == [1]
