"""Generation state machine.

Every transition is written through a compare-and-swap on the report version
so a crash leaves the last state that was actually reached, and each run
carries its own run id so a superseded run cannot move the report any
further.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from report_engine.core.exceptions import (
    GenerationInProgressError,
    InvalidTransitionError,
    ReportNotFoundError,
    StaleReportError,
)
from report_engine.schemas.report import GenerationState, ReportRecord
from report_engine.services.stores import ReportStore
from report_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


ALLOWED_TRANSITIONS = {
    GenerationState.IDLE: {GenerationState.EXTRACTING, GenerationState.ERROR},
    GenerationState.EXTRACTING: {GenerationState.VALIDATING, GenerationState.ERROR},
    GenerationState.VALIDATING: {GenerationState.NARRATING, GenerationState.ERROR},
    GenerationState.NARRATING: {GenerationState.PARSING, GenerationState.ERROR},
    GenerationState.PARSING: {GenerationState.COMPLETED, GenerationState.ERROR},
    GenerationState.COMPLETED: set(),
    GenerationState.ERROR: set(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: GenerationState, target: GenerationState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def is_stale(record: ReportRecord, now: datetime, stale_after: timedelta) -> bool:
    """Whether a non-terminal generation has sat in its state past the bound."""
    if record.generation_status.is_terminal or record.generation_status == GenerationState.IDLE:
        return False
    entered = record.generation_state_entered_at or record.generation_started_at
    if entered is None:
        return True
    if entered.tzinfo is None:
        entered = entered.replace(tzinfo=timezone.utc)
    return now - entered > stale_after


def can_start(record: ReportRecord, now: datetime, stale_after: timedelta) -> bool:
    """A new run may start from idle, a terminal state, or a stale run."""
    state = record.generation_status
    return state == GenerationState.IDLE or state.is_terminal or is_stale(record, now, stale_after)


class GenerationStateMachine:
    """Drives one generation run of one report through its states."""

    def __init__(
        self,
        store: ReportStore,
        record: ReportRecord,
        run_id: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.record = record
        self.run_id = run_id
        self.clock = clock

    @property
    def state(self) -> GenerationState:
        return self.record.generation_status

    @property
    def report_id(self) -> str:
        return self.record.id

    @classmethod
    async def start(
        cls,
        store: ReportStore,
        report_id: str,
        stale_after: timedelta,
        clock: Callable[[], datetime] = utcnow,
    ) -> "GenerationStateMachine":
        """Begin a new run and move the report to ``extracting``.

        Raises:
            ReportNotFoundError: If the report does not exist
            GenerationInProgressError: If a live run already owns the report
            StaleReportError: If another caller started a run concurrently
        """
        record = await store.get(report_id)
        if record is None:
            raise ReportNotFoundError(f"Report {report_id} not found")

        now = clock()
        if not can_start(record, now, stale_after):
            raise GenerationInProgressError(
                f"Report {report_id} is already generating (state: {record.generation_status.value})"
            )

        if not record.generation_status.is_terminal and record.generation_status != GenerationState.IDLE:
            LOGGER.warning(
                "Superseding stale generation run",
                extra={
                    "report_id": report_id,
                    "previous_run_id": record.generation_run_id,
                    "state": record.generation_status.value,
                },
            )

        run_id = uuid.uuid4().hex
        updated = await store.update(
            report_id,
            record.version,
            {
                "generation_status": GenerationState.EXTRACTING.value,
                "generation_run_id": run_id,
                "generation_started_at": now,
                "generation_state_entered_at": now,
                "generation_completed_at": None,
                "generation_error": None,
            },
        )
        LOGGER.info("Generation run started", extra={"report_id": report_id, "run_id": run_id})
        return cls(store, updated, run_id, clock)

    async def transition(self, target: GenerationState, changes: Optional[Dict[str, Any]] = None) -> ReportRecord:
        """Move to ``target`` and persist ``changes`` in the same write.

        Transitioning to the current state is a no-op.

        Raises:
            InvalidTransitionError: If the transition is not allowed
            StaleReportError: If a newer run has taken over the report
        """
        if target == self.state and not changes:
            return self.record
        if target != self.state and not can_transition(self.state, target):
            raise InvalidTransitionError(
                f"Cannot move report {self.report_id} from {self.state.value} to {target.value}"
            )

        payload: Dict[str, Any] = dict(changes or {})
        payload["generation_status"] = target.value
        if target != self.state:
            payload["generation_state_entered_at"] = self.clock()

        self.record = await self._write(payload)
        LOGGER.info(
            "Generation state transition",
            extra={"report_id": self.report_id, "run_id": self.run_id, "state": target.value},
        )
        return self.record

    async def fail(self, message: str) -> Optional[ReportRecord]:
        """Move to ``error`` with a message.

        A run that has been superseded, or has already finished, leaves the
        report alone.
        """
        if self.state.is_terminal:
            return self.record
        try:
            return await self.transition(GenerationState.ERROR, {"generation_error": message})
        except StaleReportError:
            LOGGER.warning(
                "Not recording failure for superseded run",
                extra={"report_id": self.report_id, "run_id": self.run_id},
            )
            return None

    async def _write(self, payload: Dict[str, Any]) -> ReportRecord:
        try:
            return await self.store.update(self.report_id, self.record.version, payload)
        except StaleReportError:
            current = await self.store.get(self.report_id)
            if current is None:
                raise ReportNotFoundError(f"Report {self.report_id} not found")
            if current.generation_run_id != self.run_id or current.generation_status != self.state:
                raise
            # Another writer (a section regeneration) touched the record; our run still owns it
            self.record = current
            return await self.store.update(self.report_id, current.version, payload)
