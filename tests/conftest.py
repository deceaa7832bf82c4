from pathlib import Path

import pytest

from sqlalchemy_typedtable import BackendConfig, connect
from sqlalchemy_typedtable.base import dispose_engines

STATEMENTS_DIR = Path(__file__).parent / "sql"


@pytest.fixture
def db_config(tmp_path):
    yield BackendConfig.sqlite(tmp_path / "testdb.db", statements=STATEMENTS_DIR)
    dispose_engines()


@pytest.fixture
def db(db_config):
    database = connect(db_config)
    yield database
    database.close()


@pytest.fixture
def other_db(db_config):
    database = connect(db_config)
    yield database
    database.close()
