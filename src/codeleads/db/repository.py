"""
Repository Pattern for Data Access

Provides CRUD operations and domain-specific queries for the ingestion and
enrichment aggregates. The credit ledger and the job event log keep their
own write paths (src.codeleads.credits.ledger, src.codeleads.events.event_log)
and are deliberately absent here: neither exposes update or delete.
"""
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy import select, func, or_, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.codeleads.db.models import (
    Property,
    Violation,
    IngestionJob,
    IngestionStatus,
    StagingRow,
    EnrichmentRun,
    EnrichmentOutcome,
    PropertyContact,
)
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


def chunked(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    """Yield consecutive slices of at most size items."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


class BaseRepository:
    """
    Base repository with common CRUD operations.

    Generic repository that can be extended for specific models.
    """

    def __init__(self, model: Type[T]):
        """
        Initialize repository with model class.

        Args:
            model: SQLAlchemy model class
        """
        self.model = model

    def get_by_id(self, session: Session, id_value: Any) -> Optional[T]:
        """
        Get single record by primary key.

        Args:
            session: Database session
            id_value: Primary key value

        Returns:
            Model instance or None
        """
        result = session.get(self.model, id_value)
        logger.debug(
            "repository_get_by_id",
            model=self.model.__name__,
            id=id_value,
            found=result is not None
        )
        return result

    def count(self, session: Session) -> int:
        return session.scalar(select(func.count()).select_from(self.model))


class PropertyRepository(BaseRepository):
    """Repository for Property model with natural-key lookups and paging."""

    def __init__(self):
        super().__init__(Property)

    def get_by_address_key(self, session: Session, address_key: str) -> Optional[Property]:
        return session.execute(
            select(Property).where(Property.address_key == address_key)
        ).scalar_one_or_none()

    def find_ids_by_keys(
        self,
        session: Session,
        address_keys: Sequence[str],
        chunk_size: int = 1000,
    ) -> Dict[str, str]:
        """
        Map natural keys to existing property ids.

        Lookups are issued in chunks so that the IN list stays bounded.

        Args:
            session: Database session
            address_keys: Natural keys to resolve
            chunk_size: Maximum keys per query

        Returns:
            Dict of address_key -> property id for keys that already exist
        """
        found: Dict[str, str] = {}
        unique_keys = list(dict.fromkeys(address_keys))
        for chunk in chunked(unique_keys, chunk_size):
            rows = session.execute(
                select(Property.address_key, Property.id).where(Property.address_key.in_(chunk))
            ).all()
            found.update({key: pid for key, pid in rows})
        return found

    def insert_missing(self, session: Session, candidates: Sequence[Dict[str, Any]]) -> Tuple[Dict[str, str], int]:
        """
        Insert properties whose address_key does not exist yet.

        The batch is inserted inside a savepoint. If a concurrent writer
        created one of the keys first, the savepoint is rolled back and the
        batch falls back to one-by-one insertion, re-looking up any key that
        collides.

        Args:
            session: Database session
            candidates: Dicts with address_key, address, city, state, zip_code

        Returns:
            (address_key -> property id for every candidate, number created)
        """
        if not candidates:
            return {}, 0

        try:
            with session.begin_nested():
                created = [Property(**candidate) for candidate in candidates]
                session.add_all(created)
                session.flush()
            return {p.address_key: p.id for p in created}, len(created)
        except IntegrityError:
            logger.info("property_batch_conflict_retrying_individually", batch_size=len(candidates))

        resolved: Dict[str, str] = {}
        created_count = 0
        for candidate in candidates:
            try:
                with session.begin_nested():
                    prop = Property(**candidate)
                    session.add(prop)
                    session.flush()
                resolved[prop.address_key] = prop.id
                created_count += 1
            except IntegrityError:
                existing = self.get_by_address_key(session, candidate["address_key"])
                if existing is None:
                    raise
                resolved[existing.address_key] = existing.id
        return resolved, created_count

    def list_page(
        self,
        session: Session,
        page: int = 1,
        page_size: int = 50,
        city: Optional[str] = None,
        state: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[Property], int]:
        """
        Server-side filtered, paginated property listing.

        Args:
            session: Database session
            page: 1-based page number
            page_size: Rows per page
            city: Exact city filter (case-insensitive)
            state: Exact 2-letter state filter
            search: Substring match on address or city

        Returns:
            (properties on the page, total matching count)
        """
        query = select(Property)
        if city:
            query = query.where(func.lower(Property.city) == city.strip().lower())
        if state:
            query = query.where(Property.state == state.strip().upper())
        if search:
            pattern = f"%{search.strip().lower()}%"
            query = query.where(
                or_(
                    func.lower(Property.address).like(pattern),
                    func.lower(Property.city).like(pattern),
                )
            )

        total = session.scalar(select(func.count()).select_from(query.subquery()))
        offset = (max(page, 1) - 1) * page_size
        items = session.execute(
            query.order_by(desc(Property.created_at), Property.id).offset(offset).limit(page_size)
        ).scalars().all()

        logger.debug("property_page_listed", page=page, page_size=page_size, total=total)
        return list(items), total


class ViolationRepository(BaseRepository):
    """Repository for Violation model."""

    def __init__(self):
        super().__init__(Violation)

    def existing_case_ids(self, session: Session, property_ids: Sequence[str]) -> set:
        """
        Return (property_id, case_id) pairs already stored for the given
        properties.
        """
        pairs = set()
        for chunk in chunked(list(dict.fromkeys(property_ids)), 1000):
            rows = session.execute(
                select(Violation.property_id, Violation.case_id).where(
                    Violation.property_id.in_(chunk),
                    Violation.case_id.isnot(None),
                )
            ).all()
            pairs.update((pid, case_id) for pid, case_id in rows)
        return pairs

    def get_for_property(self, session: Session, property_id: str) -> List[Violation]:
        return list(session.execute(
            select(Violation).where(Violation.property_id == property_id).order_by(Violation.id)
        ).scalars().all())


class IngestionJobRepository(BaseRepository):
    """Repository for IngestionJob model."""

    def __init__(self):
        super().__init__(IngestionJob)

    def create_job(
        self,
        session: Session,
        owner_id: str,
        source_handle: str,
        filename: Optional[str] = None,
        fallback_city: Optional[str] = None,
        fallback_state: Optional[str] = None,
        fallback_county: Optional[str] = None,
        parent_job_id: Optional[str] = None,
    ) -> IngestionJob:
        job = IngestionJob(
            owner_id=owner_id,
            source_handle=source_handle,
            filename=filename,
            fallback_city=fallback_city,
            fallback_state=fallback_state,
            fallback_county=fallback_county,
            parent_job_id=parent_job_id,
            status=IngestionStatus.QUEUED,
            warnings=[],
        )
        session.add(job)
        session.flush()
        logger.info("ingestion_job_created", job_id=job.id, owner_id=owner_id, source=source_handle)
        return job

    def get_many(self, session: Session, job_ids: Sequence[str]) -> List[IngestionJob]:
        if not job_ids:
            return []
        return list(session.execute(
            select(IngestionJob).where(IngestionJob.id.in_(list(job_ids)))
        ).scalars().all())

    def get_recent_for_owner(self, session: Session, owner_id: str, limit: int = 20) -> List[IngestionJob]:
        return list(session.execute(
            select(IngestionJob)
            .where(IngestionJob.owner_id == owner_id)
            .order_by(desc(IngestionJob.created_at))
            .limit(limit)
        ).scalars().all())


class StagingRowRepository(BaseRepository):
    """Repository for StagingRow model."""

    def __init__(self):
        super().__init__(StagingRow)

    def bulk_create(self, session: Session, job_id: str, rows: Sequence[Tuple[int, Dict[str, str]]]) -> int:
        """
        Insert staging rows for a job.

        Args:
            session: Database session
            job_id: Owning job
            rows: (row_num, raw field dict) pairs

        Returns:
            Number of rows inserted
        """
        session.add_all([StagingRow(job_id=job_id, row_num=num, raw=raw) for num, raw in rows])
        session.flush()
        return len(rows)

    def next_unprocessed(self, session: Session, job_id: str, limit: int) -> List[StagingRow]:
        return list(session.execute(
            select(StagingRow)
            .where(StagingRow.job_id == job_id, StagingRow.processed.is_(False))
            .order_by(StagingRow.row_num)
            .limit(limit)
        ).scalars().all())

    def iter_promotable(self, session: Session, job_id: str, batch_size: int, after_row: int = 0) -> List[StagingRow]:
        """Keyset page of successfully normalized rows after row_num after_row."""
        return list(session.execute(
            select(StagingRow)
            .where(
                StagingRow.job_id == job_id,
                StagingRow.row_error.is_(None),
                StagingRow.address_key.isnot(None),
                StagingRow.row_num > after_row,
            )
            .order_by(StagingRow.row_num)
            .limit(batch_size)
        ).scalars().all())

class EnrichmentRunRepository(BaseRepository):
    """Repository for EnrichmentRun and its outcomes."""

    def __init__(self):
        super().__init__(EnrichmentRun)

    def count_active(self, session: Session, owner_id: str) -> int:
        """Number of unfinished runs for the owner."""
        return session.scalar(
            select(func.count()).select_from(EnrichmentRun).where(
                EnrichmentRun.owner_id == owner_id,
                EnrichmentRun.finished_at.is_(None),
            )
        )

    def get_outcomes(self, session: Session, run_id: str) -> List[EnrichmentOutcome]:
        return list(session.execute(
            select(EnrichmentOutcome).where(EnrichmentOutcome.run_id == run_id).order_by(EnrichmentOutcome.id)
        ).scalars().all())

    def outcome_property_ids(self, session: Session, run_id: str, statuses: Optional[Sequence[Any]] = None) -> set:
        query = select(EnrichmentOutcome.property_id).where(EnrichmentOutcome.run_id == run_id)
        if statuses:
            query = query.where(EnrichmentOutcome.status.in_(statuses))
        return set(session.execute(query).scalars().all())


class PropertyContactRepository(BaseRepository):
    """Repository for vendor-sourced contacts."""

    def __init__(self):
        super().__init__(PropertyContact)

    def get_for_property(self, session: Session, property_id: str) -> List[PropertyContact]:
        return list(session.execute(
            select(PropertyContact).where(PropertyContact.property_id == property_id).order_by(PropertyContact.id)
        ).scalars().all())
