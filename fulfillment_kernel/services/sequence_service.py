"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing numbers for human-facing identifiers:
    work task numbers (``PIC-20260201-0001``), pick bin numbers
    (``BIN-000042``) and bin barcodes.  Uses a dedicated counter table with
    row-level locking (``SELECT ... FOR UPDATE``) so concurrent task or bin
    creation never hands out the same number twice.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by WorkTaskService and PickBinService.

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth for
      the next value.  MAX(task_number)+1 is never used.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via savepoint
      rollback and re-read).
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from fulfillment_kernel.db.base import Base
from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    One row per named sequence.  Task numbers use one sequence per task type
    per day (``task.PIC.20260201``); bins share one global sequence.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(60),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value.  The increment is committed with the caller's
        transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    PICK_BIN = "pick_bin"

    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    def next_value(self, sequence_name: str) -> int:
        """
        Lock (or create) the named counter, increment it and return the new
        value (always > 0).
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use.  A concurrent creator may win; the savepoint keeps
            # the rest of the caller's transaction intact.
            savepoint = self._session.begin_nested()
            try:
                self._session.add(SequenceCounter(name=sequence_name, current_value=1))
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    # ------------------------------------------------------------------
    # Identifier formats
    # ------------------------------------------------------------------

    def next_task_number(self, prefix: str) -> str:
        """``{TYP}-{YYYYMMDD}-{NNNN}``; the counter restarts every day."""
        stamp = self._clock.today_stamp()
        value = self.next_value(f"task.{prefix}.{stamp}")
        return f"{prefix}-{stamp}-{value:04d}"

    def next_bin_identifiers(self) -> tuple[str, str]:
        """Return ``(bin_number, barcode)`` for a new pick bin."""
        value = self.next_value(self.PICK_BIN)
        bin_number = f"BIN-{value:06d}"
        barcode = f"BIN-{self._clock.today_stamp()}-{value % 100000:05d}"
        return bin_number, barcode

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
