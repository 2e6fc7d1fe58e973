"""
The chain driver: the only component that writes chain state.

``start_chain`` plans the signals for a new escalation window, packs them into
blocks, materializes the first block as a calendar event and persists the
chain. ``tick`` then walks every persisted chain one step forward:

1. delete the event left over from the previous step, if any;
2. drop chains whose final event is already in place;
3. drop chains whose live block event was deleted by the user;
4. wait while the live block has not started yet;
5. otherwise materialize the next block, or the final event at the deadline
   when no block is left.

Each chain is handled independently; a calendar failure on one chain leaves
its persisted state untouched so the next tick retries it.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from mailalert_contracts import (
    ChainOutcome,
    ChainState,
    ChainStatus,
    SourceMeta,
    TickReport,
    chain_id_for,
)

from .calendar_surface import CalendarSurface, CalendarSurfaceError
from .descriptions import EventComposer
from .logging_utils import run_logger
from .planner import pack_blocks, plan_signals
from .quiet import QuietWindowPolicy
from .resolver import IdempotentEventWriter
from .scheduler import TriggerLifecycle
from .store import ChainStateStore

LOGGER = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_run_id() -> str:
    return uuid.uuid4().hex[:8]


class ChainDriver:
    """
    Drives escalation chains forward.

    Attributes:
        store: Repository of persisted chains.
        calendar: Surface events are written to.
        composer: Builds titles, descriptions and markers.
        writer: Find-before-create wrapper around ``calendar``.
        policy: Quiet-window policy used for planning.
        trigger: Keeps the periodic tick registered while chains exist.
    """

    def __init__(
        self,
        *,
        store: ChainStateStore,
        calendar: CalendarSurface,
        composer: EventComposer,
        writer: IdempotentEventWriter,
        policy: QuietWindowPolicy,
        trigger: TriggerLifecycle,
        interval_hours: int = 1,
        max_signals_per_block: int = 5,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.calendar = calendar
        self.composer = composer
        self.writer = writer
        self.policy = policy
        self.trigger = trigger
        self.interval_hours = interval_hours
        self.max_signals_per_block = max_signals_per_block
        self._clock = clock

    def start_chain(
        self,
        fingerprint: str,
        source: SourceMeta,
        window_start: datetime,
        deadline: datetime,
    ) -> Optional[ChainState]:
        """
        Start the escalation chain for ``fingerprint``.

        Idempotent: if a chain for the fingerprint is already persisted it is
        returned unchanged. Returns None when the window yields no signals.
        Calendar failures propagate; nothing is persisted in that case.
        """
        chain_id = chain_id_for(fingerprint)
        existing = self.store.get(chain_id)
        if existing is not None:
            LOGGER.info("Chain %s already running; not starting another", chain_id)
            return existing

        signals = plan_signals(window_start, deadline, self.policy, self.interval_hours)
        if not signals:
            LOGGER.info(
                "No signals fit between %s and %s; no escalation for %s",
                window_start.isoformat(),
                deadline.isoformat(),
                fingerprint,
            )
            return None

        blocks = pack_blocks(signals, self.max_signals_per_block)
        source = source.model_copy(update={"deadline_at": deadline})
        draft = self.composer.block_draft(
            chain_id=chain_id, index=0, block=blocks[0], source=source, deadline=deadline
        )
        event_id = self.writer.ensure_event(draft)

        now = self._clock()
        state = ChainState(
            chain_id=chain_id,
            fingerprint=fingerprint,
            source=source,
            blocks=blocks,
            current_index=0,
            current_event_id=event_id,
            status=ChainStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        self.store.put(state)
        self.trigger.ensure()
        LOGGER.info(
            "Started chain %s: %d signals in %d blocks, first block at %s",
            chain_id,
            len(signals),
            len(blocks),
            blocks[0].start.isoformat(),
        )
        return state

    def tick(self, run_id: Optional[str] = None) -> TickReport:
        """Advance every persisted chain by at most one step."""
        run_id = run_id or new_run_id()
        log = run_logger(LOGGER, run_id)
        now = self._clock()
        report = TickReport(run_id=run_id, started_at=now)

        for key in self.store.keys():
            chain_id = self.store.chain_id_from_key(key)
            state = self.store.get(chain_id)
            if state is None:
                report.outcomes[chain_id] = ChainOutcome.DISCARDED
                continue
            try:
                outcome = self._advance(state, now)
            except CalendarSurfaceError as exc:
                log.warning("Chain %s left for next tick: %s", chain_id, exc)
                outcome = ChainOutcome.FAILED
            report.outcomes[chain_id] = outcome
            log.info("Chain %s: %s", chain_id, outcome.value)

        self.trigger.cleanup()
        report.remaining_chains = self.store.count()
        return report

    def _advance(self, state: ChainState, now: datetime) -> ChainOutcome:
        if state.pending_delete_event_id:
            self.calendar.delete_event(state.pending_delete_event_id)
            state = state.model_copy(update={"pending_delete_event_id": None, "updated_at": now})

        if state.status is ChainStatus.FINAL_CLEANUP:
            self.store.delete(state.chain_id)
            return ChainOutcome.COMPLETED

        if not state.current_event_id or not self.calendar.event_exists(state.current_event_id):
            self.store.delete(state.chain_id)
            return ChainOutcome.CANCELLED

        if now < state.current_block.start:
            self.store.put(state)
            return ChainOutcome.WAITING

        if state.has_next_block:
            index = state.current_index + 1
            draft = self.composer.block_draft(
                chain_id=state.chain_id,
                index=index,
                block=state.blocks[index],
                source=state.source,
                deadline=state.deadline,
            )
            event_id = self.writer.ensure_event(draft)
            self.store.put(
                state.model_copy(
                    update={
                        "pending_delete_event_id": state.current_event_id,
                        "current_event_id": event_id,
                        "current_index": index,
                        "updated_at": now,
                    }
                )
            )
            return ChainOutcome.ADVANCED

        try:
            self.writer.ensure_event(self.composer.final_draft(state))
        except CalendarSurfaceError as exc:
            LOGGER.error("Final event for %s could not be created; dropping chain: %s", state.chain_id, exc)
            self.store.delete(state.chain_id)
            return ChainOutcome.ABANDONED

        self.store.put(
            state.model_copy(
                update={
                    "pending_delete_event_id": state.current_event_id,
                    "current_event_id": None,
                    "status": ChainStatus.FINAL_CLEANUP,
                    "updated_at": now,
                }
            )
        )
        return ChainOutcome.FINALIZED
