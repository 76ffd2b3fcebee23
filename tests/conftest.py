import pytest

from landclaim.db.connection import Database

from support import FrozenClock


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def database(tmp_path):
    """File-backed SQLite database, usable from several threads."""
    database = Database()
    database.initialize(f"sqlite:///{tmp_path / 'landclaim.db'}")
    yield database
    database.dispose()
