import pytest

from config import DEFAULT_SCHEMA_PATH
from schema_store import load_schema
from unit_catalog import generate_catalog


@pytest.fixture(scope="session")
def schema():
    return load_schema(DEFAULT_SCHEMA_PATH)


@pytest.fixture(scope="session")
def catalog(schema):
    return generate_catalog(schema)


@pytest.fixture(scope="session")
def schema_text():
    return DEFAULT_SCHEMA_PATH.read_text(encoding="utf-8")
