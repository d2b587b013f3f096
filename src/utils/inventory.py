import logging as log
import threading
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Waybill
from utils.helpers import session_scope, utcnow

STATUS = Waybill.StatusChoices
SOURCE = Waybill.SourceChoices

# Keeps IN (...) lists well below driver parameter limits
CHUNK_SIZE = 500


def _chunks(codes: List[str]):
    for start in range(0, len(codes), CHUNK_SIZE):
        yield codes[start : start + CHUNK_SIZE]


class WaybillInventory:
    """Pool of stored waybills.

    A code only ever moves AVAILABLE -> RESERVED -> USED, or back from
    RESERVED to AVAILABLE when the shipment it was reserved for fails.
    Rows are never deleted. Claims are serialised by an in-process lock and
    each code is taken with a conditional UPDATE, so two claimers (threads
    or processes) can never walk away with the same code.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory
        self._lock = threading.Lock()

    def _scope(self, db: Optional[Session] = None):
        return session_scope(db, self.session_factory)

    def claim(
        self, n: int, reserved_for: Optional[str] = None, db: Optional[Session] = None
    ) -> List[Waybill]:
        """Reserve up to ``n`` available carrier-backed waybills, oldest first."""
        if n <= 0:
            return []

        with self._lock, self._scope(db) as session:
            claimed: List[str] = []
            while len(claimed) < n:
                candidates = [
                    code
                    for (code,) in session.query(Waybill.code)
                    .filter(
                        Waybill.status == STATUS.AVAILABLE,
                        Waybill.source != SOURCE.LOCAL_FALLBACK,
                    )
                    .order_by(Waybill.generated_at.asc(), Waybill.code.asc())
                    .limit(n - len(claimed))
                    .all()
                ]
                if not candidates:
                    break
                claimed.extend(self._reserve(session, candidates, reserved_for))

            waybills = self._load(session, claimed)

        if len(claimed) < n:
            log.info(f"Waybill pool short: claimed {len(claimed)} of {n}")
        return waybills

    def claim_codes(
        self, codes: Iterable[str], reserved_for: Optional[str] = None, db: Optional[Session] = None
    ) -> List[Waybill]:
        """Reserve exactly these codes where they are still available."""
        codes = list(dict.fromkeys(codes))
        if not codes:
            return []
        with self._lock, self._scope(db) as session:
            claimed = self._reserve(session, codes, reserved_for)
            return self._load(session, claimed)

    @staticmethod
    def _reserve(session: Session, codes: List[str], reserved_for: Optional[str]) -> List[str]:
        now = utcnow()
        reserved = []
        for code in codes:
            updated = (
                session.query(Waybill)
                .filter(Waybill.code == code, Waybill.status == STATUS.AVAILABLE)
                .update(
                    {
                        Waybill.status: STATUS.RESERVED,
                        Waybill.reserved_for: reserved_for,
                        Waybill.reserved_at: now,
                    },
                    synchronize_session=False,
                )
            )
            if updated == 1:
                reserved.append(code)
        return reserved

    @staticmethod
    def _load(session: Session, codes: List[str]) -> List[Waybill]:
        if not codes:
            return []
        rows = {}
        for chunk in _chunks(codes):
            for waybill in session.query(Waybill).filter(Waybill.code.in_(chunk)).populate_existing():
                rows[waybill.code] = waybill
        return [rows[code] for code in codes if code in rows]

    def commit(
        self, codes: Iterable[str], order_ref: Optional[str] = None, db: Optional[Session] = None
    ) -> int:
        """Mark reserved codes as used. Codes already used are left alone."""
        codes = list(dict.fromkeys(codes))
        if not codes:
            return 0
        values = {Waybill.status: STATUS.USED, Waybill.used_at: utcnow()}
        if order_ref:
            values[Waybill.reserved_for] = order_ref
        updated = 0
        with self._scope(db) as session:
            for chunk in _chunks(codes):
                updated += (
                    session.query(Waybill)
                    .filter(Waybill.code.in_(chunk), Waybill.status == STATUS.RESERVED)
                    .update(values, synchronize_session=False)
                )
        log.info(f"Committed {updated} waybill(s) as used")
        return updated

    def release(self, codes: Iterable[str], db: Optional[Session] = None) -> int:
        """Return reserved codes to the pool after a failed attempt."""
        codes = list(dict.fromkeys(codes))
        if not codes:
            return 0
        updated = 0
        with self._scope(db) as session:
            for chunk in _chunks(codes):
                updated += (
                    session.query(Waybill)
                    .filter(Waybill.code.in_(chunk), Waybill.status == STATUS.RESERVED)
                    .update(
                        {
                            Waybill.status: STATUS.AVAILABLE,
                            Waybill.reserved_for: None,
                            Waybill.reserved_at: None,
                        },
                        synchronize_session=False,
                    )
                )
        log.info(f"Released {updated} waybill(s) back to the pool")
        return updated

    def store(
        self,
        codes: Iterable[str],
        source: str = SOURCE.CARRIER_BULK,
        status: str = STATUS.AVAILABLE,
        reserved_for: Optional[str] = None,
        db: Optional[Session] = None,
    ) -> List[str]:
        """Ingest codes, skipping any already known. Returns the newly stored codes."""
        codes = [c for c in dict.fromkeys(str(c).strip() for c in codes) if c]
        if not codes:
            return []

        with self._scope(db) as session:
            existing = set()
            for chunk in _chunks(codes):
                existing.update(
                    code for (code,) in session.query(Waybill.code).filter(Waybill.code.in_(chunk))
                )
            fresh = [c for c in codes if c not in existing]
            now = utcnow()
            rows = [
                Waybill(
                    code=code,
                    status=status,
                    source=source,
                    generated_at=now,
                    reserved_for=reserved_for,
                    reserved_at=now if status == STATUS.RESERVED else None,
                    waybill_metadata={"batch_size": len(codes)},
                )
                for code in fresh
            ]
            try:
                with session.begin_nested():
                    session.add_all(rows)
            except IntegrityError:
                # A concurrent store inserted some of these codes first. Only
                # the savepoint is rolled back, the caller's work survives.
                log.warning("Duplicate waybills during bulk store, inserting one by one")
                fresh = [row.code for row in rows if self._insert_one(session, row)]

        if existing:
            log.info(f"Skipped {len(existing)} waybill(s) already in the pool")
        log.info(f"Stored {len(fresh)} waybill(s) from {source}")
        return fresh

    @staticmethod
    def _insert_one(session: Session, row: Waybill) -> bool:
        try:
            with session.begin_nested():
                session.add(
                    Waybill(
                        code=row.code,
                        status=row.status,
                        source=row.source,
                        generated_at=row.generated_at,
                        reserved_for=row.reserved_for,
                        reserved_at=row.reserved_at,
                        waybill_metadata=row.waybill_metadata,
                    )
                )
            return True
        except IntegrityError:
            return False

    def count_available(self, db: Optional[Session] = None) -> int:
        with self._scope(db) as session:
            return (
                session.query(func.count(Waybill.code))
                .filter(
                    Waybill.status == STATUS.AVAILABLE,
                    Waybill.source != SOURCE.LOCAL_FALLBACK,
                )
                .scalar()
            )

    def stats(self, db: Optional[Session] = None) -> Dict[str, object]:
        with self._scope(db) as session:
            by_status = dict(
                session.query(Waybill.status, func.count(Waybill.code)).group_by(Waybill.status).all()
            )
            by_source = dict(
                session.query(Waybill.source, func.count(Waybill.code)).group_by(Waybill.source).all()
            )
        return {
            "total": sum(by_status.values()),
            "available": by_status.get(STATUS.AVAILABLE, 0),
            "reserved": by_status.get(STATUS.RESERVED, 0),
            "used": by_status.get(STATUS.USED, 0),
            "by_source": by_source,
        }

    def get(self, code: str, db: Optional[Session] = None) -> Optional[Waybill]:
        with self._scope(db) as session:
            return session.get(Waybill, code)

    def list(
        self, status: Optional[str] = None, limit: int = 50, db: Optional[Session] = None
    ) -> List[Waybill]:
        with self._scope(db) as session:
            query = session.query(Waybill)
            if status:
                query = query.filter(Waybill.status == status.upper())
            return query.order_by(Waybill.generated_at.desc()).limit(limit).all()
