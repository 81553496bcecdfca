"""Moves generations stuck in a non-terminal state to ``error``.

A cancelled stream or a crashed worker leaves its report in whatever state
the run last reached. The watchdog bounds how long that can last.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from report_engine.core.config import GenerationSettings, settings
from report_engine.core.exceptions import StaleReportError
from report_engine.schemas.report import GenerationState
from report_engine.services.pipeline.state_machine import is_stale, utcnow
from report_engine.services.stores import ReportStore
from report_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

ACTIVE_STATES = (
    GenerationState.EXTRACTING,
    GenerationState.VALIDATING,
    GenerationState.NARRATING,
    GenerationState.PARSING,
)


class GenerationWatchdog:
    def __init__(
        self,
        store: ReportStore,
        generation_settings: Optional[GenerationSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        config = generation_settings or settings.generation
        self.timeout = timedelta(seconds=config.generation_timeout_seconds)
        self.clock = clock

    def timeout_message(self, state: GenerationState) -> str:
        minutes = int(self.timeout.total_seconds() // 60)
        return f"Generation timed out in state '{state.value}' after {minutes} minutes"

    async def sweep(self, now: Optional[datetime] = None) -> List[str]:
        """Fail every stale generation.

        Safe to run repeatedly; a report already moved on by its own run or by
        a concurrent sweep is left alone.

        Returns:
            Ids of the reports moved to ``error``
        """
        now = now or self.clock()
        candidates = await self.store.list_in_states(ACTIVE_STATES, now - self.timeout)

        failed = []
        for record in candidates:
            if not is_stale(record, now, self.timeout):
                continue
            try:
                await self.store.update(
                    record.id,
                    record.version,
                    {
                        "generation_status": GenerationState.ERROR.value,
                        "generation_state_entered_at": now,
                        "generation_error": self.timeout_message(record.generation_status),
                    },
                )
            except StaleReportError:
                LOGGER.info(f"Report {record.id} changed during sweep, skipping")
                continue
            failed.append(record.id)
            LOGGER.warning(
                "Stuck generation moved to error",
                extra={
                    "report_id": record.id,
                    "run_id": record.generation_run_id,
                    "state": record.generation_status.value,
                },
            )

        if failed:
            LOGGER.info(f"Watchdog failed {len(failed)} stuck generation(s)")
        return failed

