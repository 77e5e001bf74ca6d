"""
Tests for repositories and session helpers
"""
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from src.codeleads.db.models import EnrichmentRun, Property
from src.codeleads.db.repository import PropertyRepository, chunked
from src.codeleads.db.session import health_check, session_scope, with_retry


def candidate(n, city="Austin", state="TX"):
    return {
        "address_key": f"{n} main st|{city.lower()}|{state.lower()}|",
        "address": f"{n} MAIN ST",
        "city": city,
        "state": state,
        "zip_code": None,
    }


def test_chunked():
    assert [list(c) for c in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
    assert list(chunked([], 3)) == []


def test_health_check(session_factory):
    assert health_check(session_factory) is True


def test_with_retry_recovers_from_transient_errors():
    calls = []

    @with_retry(max_retries=3, retry_delay=0)
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise OperationalError("SELECT 1", {}, Exception("server closed the connection"))
        return "ok"

    assert flaky() == "ok"
    assert len(calls) == 3


def test_with_retry_gives_up():
    @with_retry(max_retries=2, retry_delay=0)
    def broken():
        raise OperationalError("SELECT 1", {}, Exception("down"))

    with pytest.raises(OperationalError):
        broken()


class TestPropertyRepository:

    def test_insert_missing_creates_and_resolves(self, session_factory):
        repo = PropertyRepository()

        with session_scope(session_factory) as session:
            ids, created = repo.insert_missing(session, [candidate(1), candidate(2)])

        assert created == 2
        assert set(ids) == {candidate(1)["address_key"], candidate(2)["address_key"]}

    def test_insert_missing_tolerates_existing_keys(self, session_factory):
        repo = PropertyRepository()
        with session_scope(session_factory) as session:
            first, _ = repo.insert_missing(session, [candidate(1)])

        with session_scope(session_factory) as session:
            ids, created = repo.insert_missing(session, [candidate(1), candidate(3)])

        assert created == 1
        assert ids[candidate(1)["address_key"]] == first[candidate(1)["address_key"]]
        with session_scope(session_factory) as session:
            assert repo.count(session) == 2

    def test_find_ids_by_keys_in_chunks(self, session_factory):
        repo = PropertyRepository()
        with session_scope(session_factory) as session:
            repo.insert_missing(session, [candidate(n) for n in range(1, 6)])

        with session_scope(session_factory) as session:
            keys = [candidate(n)["address_key"] for n in range(1, 8)]
            found = repo.find_ids_by_keys(session, keys, chunk_size=2)

        assert len(found) == 5

    def test_address_key_unique(self, session_factory):
        with pytest.raises(IntegrityError):
            with session_scope(session_factory) as session:
                session.add(Property(**candidate(1)))
                session.add(Property(**candidate(1)))

    def test_list_page_filters_and_counts(self, session_factory):
        repo = PropertyRepository()
        with session_scope(session_factory) as session:
            repo.insert_missing(session, [candidate(n) for n in range(1, 8)])
            repo.insert_missing(session, [candidate(n, "Boston", "MA") for n in range(1, 4)])

        with session_scope(session_factory) as session:
            items, total = repo.list_page(session, page=2, page_size=3, city="austin")
            assert total == 7
            assert len(items) == 3
            assert {p.city for p in items} == {"Austin"}

            items, total = repo.list_page(session, state="ma")
            assert total == 3

            items, total = repo.list_page(session, search="7 main")
            assert [p.address for p in items] == ["7 MAIN ST"]


def test_run_counters_must_balance(session_factory):
    with pytest.raises(IntegrityError):
        with session_scope(session_factory) as session:
            session.add(EnrichmentRun(run_id="r1", owner_id="u", total=3, queued=1, succeeded=1, failed=0))
