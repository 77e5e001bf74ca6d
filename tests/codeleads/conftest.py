"""
Shared fixtures: a file-backed SQLite database per test, a byte store in a
temporary directory, and CSV builders.
"""
import pytest

from src.codeleads.db.base import Base, import_all_models
from src.codeleads.db.session import build_engine, make_session_factory
from src.codeleads.events.event_log import JobEventLog
from src.codeleads.storage import LocalByteStore


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    import_all_models()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def store(tmp_path):
    return LocalByteStore(str(tmp_path / "uploads"))


@pytest.fixture
def event_log(session_factory):
    return JobEventLog(session_factory)


def make_csv(rows, headers=("address", "city", "state", "zip", "case_id", "violation", "opened_date")):
    """Build CSV text from tuples in header order."""
    lines = [",".join(headers)]
    for row in rows:
        lines.append(",".join(str(v) for v in row))
    return "\n".join(lines) + "\n"


def violation_rows(count, city, state, start=1, zip_code="78701"):
    return [
        (f"{n} Main St", city, state, zip_code, f"CASE-{city[:3].upper()}-{n}", "Overgrown yard", "2024-01-15")
        for n in range(start, start + count)
    ]


@pytest.fixture
def csv_factory():
    return make_csv


@pytest.fixture
def rows_factory():
    return violation_rows
