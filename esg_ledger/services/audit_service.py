"""
ESG Ledger - Audit Chain Service

Implements a blockchain-like hash chain over the audit log.

Every state-changing action appends an entry that is cryptographically linked
to the previous one, so any retroactive edit, deletion or reordering is
detectable by ``verify``.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from esg_ledger.config import settings
from esg_ledger.models.audit import AuditLog, GENESIS_HASH
from esg_ledger.models.base import utcnow
from esg_ledger.utils.error_handling import (
    AppException,
    AuditEntryNotFoundException,
    ChainAppendConflictException,
    StorageException,
    ValidationException,
)

logger = logging.getLogger(__name__)

# Key for pg_advisory_xact_lock; held from tail read until the appending transaction ends
AUDIT_CHAIN_LOCK_KEY = 0x45534741

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

DateBound = Union[datetime, date, str]


class CanonicalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, datetime, UUID and Enum values"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return format_timestamp(obj)
        if isinstance(obj, date):
            return obj.isoformat()
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def format_timestamp(value: datetime) -> str:
    """Render a datetime as fixed-width ISO-8601 UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def normalize_values(values: Any) -> Any:
    """
    Reduce a snapshot to plain JSON types.

    The normalized form is what gets stored and hashed, so the value read back
    from the database hashes identically to the value that was appended.
    """
    if values is None:
        return None
    try:
        return json.loads(json.dumps(values, cls=CanonicalEncoder, allow_nan=False))
    except (TypeError, ValueError) as e:
        raise ValidationException(
            message=f"Audit snapshot is not JSON serializable: {e}",
            field="values",
        ) from e


def canonical_json(data: Dict[str, Any]) -> str:
    """Deterministic serialization: sorted keys at every depth, no whitespace."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        cls=CanonicalEncoder,
    )


def compute_entry_hash(
    previous_hash: str,
    action: str,
    table_name: str,
    record_id: str,
    user_id: Optional[str],
    timestamp: str,
    old_values: Any,
    new_values: Any,
) -> str:
    """SHA-256 hex digest of an entry's hashed fields"""
    payload = canonical_json({
        "previous_hash": previous_hash,
        "action": action,
        "table_name": table_name,
        "record_id": record_id,
        "user_id": user_id,
        "timestamp": timestamp,
        "old_values": old_values,
        "new_values": new_values,
    })
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class AppendResult:
    """Id and hash of a newly appended entry."""
    id: int
    hash: str


@dataclass
class ChainDiscrepancy:
    """One integrity finding."""
    entry_id: int
    type: str  # hash_mismatch | broken_chain
    message: str
    expected: Optional[str] = None
    actual: Optional[str] = None


@dataclass
class ChainVerificationResult:
    """
    Outcome of a chain verification.

    ``invalid_entries`` lists each offending id once, in the order first
    detected. ``discrepancies`` keeps every finding, so an entry that fails
    both the content and the link check appears there twice.
    """
    is_valid: bool = True
    total_entries: int = 0
    invalid_entries: List[int] = field(default_factory=list)
    discrepancies: List[ChainDiscrepancy] = field(default_factory=list)
    last_verified_id: Optional[int] = None

    def flag(self, discrepancy: ChainDiscrepancy) -> None:
        self.is_valid = False
        self.discrepancies.append(discrepancy)
        if discrepancy.entry_id not in self.invalid_entries:
            self.invalid_entries.append(discrepancy.entry_id)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AuditService:
    """
    Service for maintaining the hash-chained audit log

    ``append`` joins the caller's transaction and never commits, so an audit
    entry is durable exactly when the change it records is.
    """

    HASH_ALGORITHM = "sha256"

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        action: str,
        table_name: str,
        record_id: Any,
        user_id: Optional[Any],
        user_role: Optional[str] = None,
        old_values: Any = None,
        new_values: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AppendResult:
        """
        Append an entry to the chain.

        The timestamp is assigned here, never taken from the caller.

        Raises:
            StorageException: persistence failed (including a lost race for the tail)
            ValidationException: snapshots are not JSON serializable
        """
        metadata = metadata or {}
        old_values = normalize_values(old_values)
        new_values = normalize_values(new_values)
        record_id = str(record_id)
        user_id = str(user_id) if user_id is not None else None

        previous_hash = GENESIS_HASH
        try:
            await self._acquire_chain_lock()
            previous_hash = await self._get_chain_tail()

            timestamp = format_timestamp(utcnow())
            current_hash = compute_entry_hash(
                previous_hash=previous_hash,
                action=action,
                table_name=table_name,
                record_id=record_id,
                user_id=user_id,
                timestamp=timestamp,
                old_values=old_values,
                new_values=new_values,
            )

            entry = AuditLog(
                previous_hash=previous_hash,
                current_hash=current_hash,
                action=action,
                table_name=table_name,
                record_id=record_id,
                user_id=user_id,
                user_role=user_role,
                old_values=old_values,
                new_values=new_values,
                timestamp=timestamp,
                ip_address=metadata.get("ip_address"),
                user_agent=metadata.get("user_agent"),
                session_id=metadata.get("session_id"),
            )
            self.db.add(entry)
            await self.db.flush()
        except IntegrityError as e:
            if "previous_hash" in str(e.orig):
                raise ChainAppendConflictException(previous_hash, original_error=e) from e
            raise StorageException.from_sqlalchemy(e, "audit append") from e
        except SQLAlchemyError as e:
            raise StorageException.from_sqlalchemy(e, "audit append") from e

        logger.info(f"Appended audit entry #{entry.id} ({action}) for {table_name}/{record_id}")

        return AppendResult(id=entry.id, hash=current_hash)

    async def append_and_commit(self, *args, **kwargs) -> AppendResult:
        """Append as a standalone unit of work."""
        try:
            result = await self.append(*args, **kwargs)
            await self.db.commit()
        except AppException:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageException.from_sqlalchemy(e, "audit commit") from e
        return result

    async def verify(
        self,
        start_id: int = 1,
        end_id: Optional[int] = None,
    ) -> ChainVerificationResult:
        """
        Verify the integrity of the hash chain over ``[start_id, end_id]``.

        Each entry's hash is recomputed from its stored fields, and each entry
        after the first in the range must point at its predecessor's hash.
        Entries are read in batches; the run is read-only, so an interrupted
        verification can simply be resumed from ``last_verified_id + 1``.
        """
        result = ChainVerificationResult()
        batch_size = settings.audit_verify_batch_size
        prior_hash: Optional[str] = None
        cursor = start_id - 1

        while True:
            query = (
                select(
                    AuditLog.id,
                    AuditLog.previous_hash,
                    AuditLog.current_hash,
                    AuditLog.action,
                    AuditLog.table_name,
                    AuditLog.record_id,
                    AuditLog.user_id,
                    AuditLog.timestamp,
                    AuditLog.old_values,
                    AuditLog.new_values,
                )
                .where(AuditLog.id > cursor)
                .order_by(AuditLog.id)
                .limit(batch_size)
            )
            if end_id is not None:
                query = query.where(AuditLog.id <= end_id)

            try:
                rows = (await self.db.execute(query)).all()
            except SQLAlchemyError as e:
                raise StorageException.from_sqlalchemy(e, "audit verification") from e

            for row in rows:
                result.total_entries += 1

                expected_hash = compute_entry_hash(
                    previous_hash=row.previous_hash,
                    action=row.action,
                    table_name=row.table_name,
                    record_id=row.record_id,
                    user_id=row.user_id,
                    timestamp=row.timestamp,
                    old_values=row.old_values,
                    new_values=row.new_values,
                )
                if expected_hash != row.current_hash:
                    result.flag(ChainDiscrepancy(
                        entry_id=row.id,
                        type="hash_mismatch",
                        message=f"Content hash mismatch at entry #{row.id}",
                        expected=expected_hash,
                        actual=row.current_hash,
                    ))

                if prior_hash is not None and row.previous_hash != prior_hash:
                    result.flag(ChainDiscrepancy(
                        entry_id=row.id,
                        type="broken_chain",
                        message=f"Previous hash mismatch at entry #{row.id}",
                        expected=prior_hash,
                        actual=row.previous_hash,
                    ))

                prior_hash = row.current_hash
                result.last_verified_id = row.id

            if len(rows) < batch_size:
                break
            cursor = rows[-1].id

        if result.is_valid:
            logger.info(f"Audit chain verified: {result.total_entries} entries from #{start_id}")
        else:
            logger.warning(
                f"Audit chain verification failed: {len(result.invalid_entries)} invalid "
                f"of {result.total_entries} entries ({result.invalid_entries})"
            )

        return result

    async def query(
        self,
        record_id: Optional[Any] = None,
        table_name: Optional[str] = None,
        user_id: Optional[Any] = None,
        start_date: Optional[DateBound] = None,
        end_date: Optional[DateBound] = None,
        limit: Optional[int] = None,
    ) -> List[AuditLog]:
        """Get audit entries matching all given filters, newest first"""
        if limit is None:
            limit = settings.audit_query_default_limit
        if limit < 1:
            raise ValidationException("limit must be a positive integer", field="limit")

        query = select(AuditLog)

        if record_id is not None:
            query = query.where(AuditLog.record_id == str(record_id))
        if table_name:
            query = query.where(AuditLog.table_name == table_name)
        if user_id is not None:
            query = query.where(AuditLog.user_id == str(user_id))
        if start_date is not None:
            query = query.where(AuditLog.timestamp >= self._date_bound(start_date, "start_date"))
        if end_date is not None:
            query = query.where(
                AuditLog.timestamp <= self._date_bound(end_date, "end_date", end_of_day=True)
            )

        query = (
            query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )

        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise StorageException.from_sqlalchemy(e, "audit query") from e
        return list(result.scalars().all())

    async def get_entry(self, entry_id: int) -> AuditLog:
        """Get a single audit entry by id"""
        try:
            entry = await self.db.get(AuditLog, entry_id, populate_existing=True)
        except SQLAlchemyError as e:
            raise StorageException.from_sqlalchemy(e, "audit lookup") from e
        if entry is None:
            raise AuditEntryNotFoundException(entry_id)
        return entry

    async def get_record_trail(self, table_name: str, record_id: Any) -> List[AuditLog]:
        """Get all entries for one logical record, oldest first"""
        query = (
            select(AuditLog)
            .where(AuditLog.table_name == table_name, AuditLog.record_id == str(record_id))
            .order_by(AuditLog.id)
        )
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise StorageException.from_sqlalchemy(e, "audit query") from e
        return list(result.scalars().all())

    async def _acquire_chain_lock(self) -> None:
        """Serialize appenders across connections until the current transaction ends"""
        if self.db.get_bind().dialect.name == "postgresql":
            await self.db.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": AUDIT_CHAIN_LOCK_KEY},
            )

    async def _get_chain_tail(self) -> str:
        """Hash of the newest entry, or the genesis sentinel for an empty chain"""
        query = select(AuditLog.current_hash).order_by(AuditLog.id.desc()).limit(1)
        result = await self.db.execute(query)
        return result.scalar_one_or_none() or GENESIS_HASH

    @staticmethod
    def _date_bound(value: DateBound, field_name: str, end_of_day: bool = False) -> str:
        """Normalize a date filter to the stored timestamp format."""
        if isinstance(value, str):
            raw = value.strip()
            try:
                if len(raw) == 10:
                    value = date.fromisoformat(raw)
                else:
                    value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            except ValueError as e:
                raise ValidationException(
                    message=f"Invalid date: {raw}",
                    field=field_name,
                ) from e

        if isinstance(value, datetime):
            return format_timestamp(value)

        bound = time.max if end_of_day else time.min
        return format_timestamp(datetime.combine(value, bound, tzinfo=timezone.utc))
