import logging
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.db import SessionLocal  # short-lived sessions so markers are visible at once
from storefront.models.idempotency import IdempotencyRecord, IdempotencyStatus

log = logging.getLogger(__name__)


class IdempotencyRepository:
    def __init__(self, db: Session):
        # db is the caller's session (longer-lived)
        self.db = db

    def get(self, key: str) -> Optional[IdempotencyRecord]:
        # populate_existing: the row is written by short-lived sessions, never trust the identity map
        return (
            self.db.query(IdempotencyRecord)
            .filter(IdempotencyRecord.key == key)
            .populate_existing()
            .first()
        )

    def begin(
        self, key: str, operation: str, order_id: Optional[int] = None
    ) -> Tuple[Optional[IdempotencyRecord], bool]:
        """
        Claim `key` for the caller.

        Returns (record, owner):
          - owner == True  -> this call inserted the IN_PROGRESS row, or took over a FAILED one
          - owner == False -> another request already completed or is still running it
        """
        owner = False
        try:
            with SessionLocal() as s:
                s.add(
                    IdempotencyRecord(
                        key=key,
                        operation=operation,
                        order_id=order_id,
                        status=IdempotencyStatus.IN_PROGRESS,
                    )
                )
                s.commit()
                owner = True
        except IntegrityError:
            log.debug("begin(): key already claimed key=%r", key)
            # a failed attempt may be retried; take it over atomically
            with SessionLocal() as s:
                res = s.execute(
                    update(IdempotencyRecord)
                    .where(
                        IdempotencyRecord.key == key,
                        IdempotencyRecord.status == IdempotencyStatus.FAILED,
                    )
                    .values(
                        status=IdempotencyStatus.IN_PROGRESS,
                        last_error=None,
                        attempts=IdempotencyRecord.attempts + 1,
                    )
                )
                s.commit()
                owner = res.rowcount == 1
        return self.get(key), owner

    def mark_completed(self, key: str, response_body: dict) -> Optional[IdempotencyRecord]:
        with SessionLocal() as s:
            rec = s.query(IdempotencyRecord).filter(IdempotencyRecord.key == key).first()
            if not rec:
                raise RuntimeError(f"Idempotency record missing for key: {key}")
            rec.status = IdempotencyStatus.COMPLETED
            rec.response_body = response_body
            s.commit()
        log.debug("mark_completed(): key=%r", key)
        return self.get(key)

    def mark_failed(self, key: str, error_message: str) -> Optional[IdempotencyRecord]:
        with SessionLocal() as s:
            rec = s.query(IdempotencyRecord).filter(IdempotencyRecord.key == key).first()
            if rec:
                rec.status = IdempotencyStatus.FAILED
                rec.last_error = error_message[:1024]
                s.commit()
        return self.get(key)
