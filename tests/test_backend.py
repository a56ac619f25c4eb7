import sqlite3

import pytest
from sqlalchemy.exc import IntegrityError

from olivos.backend import is_conflict
from tests.fakes import FakeAPIError


def _integrity(driver_message, params=("Unique Week",)):
    return IntegrityError("INSERT INTO collections (name) VALUES (?)", params, sqlite3.IntegrityError(driver_message))


def test_sqlite_unique_failures_are_conflicts():
    assert is_conflict(_integrity("UNIQUE constraint failed: profiles.trainer_code"))


def test_foreign_key_failure_mentioning_unique_is_not_a_conflict():
    assert not is_conflict(_integrity("FOREIGN KEY constraint failed"))


class _PgError(Exception):
    def __init__(self, pgcode):
        super().__init__("violates constraint unique_thing")
        self.pgcode = pgcode


@pytest.mark.parametrize("pgcode, expected", [("23505", True), ("23503", False)])
def test_postgres_errors_use_the_sqlstate(pgcode, expected):
    exc = IntegrityError("UPDATE profiles SET trainer_code = %s", ("1",), _PgError(pgcode))
    assert is_conflict(exc) is expected


def test_postgrest_errors_use_the_code():
    assert is_conflict(FakeAPIError("duplicate key value violates unique constraint", code="23505"))
    assert not is_conflict(FakeAPIError("insert or update violates foreign key constraint", code="23503"))
