import logging
from contextlib import contextmanager

import pytest
from sqlalchemy.exc import IntegrityError

from classroom.database import SESSION_OVERLAP_CONSTRAINT, install_overlap_constraint


class _Result:
    def __init__(self, row=None):
        self._row = row

    def first(self):
        return self._row


class _FakeConnection:
    def __init__(self, *, constraint_exists=False, overlapping_rows=False):
        self.constraint_exists = constraint_exists
        self.overlapping_rows = overlapping_rows
        self.statements: list[str] = []

    def execute(self, statement, params=None):
        sql = str(statement)
        self.statements.append(sql)
        if 'pg_constraint' in sql:
            return _Result((1,) if self.constraint_exists else None)
        if 'ADD CONSTRAINT' in sql and self.overlapping_rows:
            raise IntegrityError(sql, params, Exception('could not create exclusion constraint'))
        return _Result()


class _FakeBind:
    def __init__(self, connection: _FakeConnection):
        self.connection = connection

    @contextmanager
    def begin(self):
        yield self.connection


def test_install_overlap_constraint_adds_constraint() -> None:
    connection = _FakeConnection()

    assert install_overlap_constraint(_FakeBind(connection)) is True
    assert any('btree_gist' in sql for sql in connection.statements)
    assert any(SESSION_OVERLAP_CONSTRAINT in sql and 'EXCLUDE USING gist' in sql for sql in connection.statements)


def test_install_overlap_constraint_skips_existing_constraint() -> None:
    connection = _FakeConnection(constraint_exists=True)

    assert install_overlap_constraint(_FakeBind(connection)) is True
    assert not any('ADD CONSTRAINT' in sql for sql in connection.statements)


def test_install_overlap_constraint_logs_when_rows_already_overlap(caplog: pytest.LogCaptureFixture) -> None:
    connection = _FakeConnection(overlapping_rows=True)

    with caplog.at_level(logging.ERROR, logger='classroom.database'):
        assert install_overlap_constraint(_FakeBind(connection)) is False

    assert 'already holds overlapping scheduled sessions' in caplog.text
