"""
Periodic sweep of time slots: applies the time-driven lifecycle rules.

Each slot is handled in its own session and transaction so one failing row does not
abort the cycle; a slot that fails is simply picked up again on the next run.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..database import async_session
from ..infrastructure.repositories import SqlAlchemyTimeSlotRepository
from ..usecases import sweep as sweep_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "time_slot_sweep"


@dataclass
class SweepReport:
    examined: int = 0
    changed: int = 0
    failed: int = 0


async def run_sweep_cycle(
    session_factory: async_sessionmaker[AsyncSession] = async_session,
    *,
    now: Optional[datetime] = None,
) -> SweepReport:
    now = now or utc_now_naive()
    report = SweepReport()

    async with session_factory() as session:
        slot_ids = await SqlAlchemyTimeSlotRepository(session).list_sweep_candidates(now)

    for slot_id in slot_ids:
        report.examined += 1
        try:
            async with session_factory() as session:
                async with session.begin():
                    outcome = await sweep_usecase.sweep_slot(
                        SqlAlchemyTimeSlotRepository(session),
                        slot_id=slot_id,
                        now=now,
                    )
        except Exception:
            report.failed += 1
            logger.exception("Sweep of time slot %s failed; retrying next cycle", slot_id)
            continue

        if outcome is None or not outcome.changed:
            continue
        report.changed += 1
        logger.info(
            "Time slot %s: %s -> %s (players=%s, chat_archived=%s)",
            outcome.slot_id,
            outcome.status_from.value,
            outcome.status_to.value,
            outcome.players_count,
            outcome.chat_archived,
        )
        try:
            emit_audit_log(
                action="slot.swept",
                initiator="system",
                slot_id=outcome.slot_id,
                room_id=outcome.room_id,
                status_from=outcome.status_from,
                status_to=outcome.status_to,
                players_count=outcome.players_count,
                extra={"chat_archived": outcome.chat_archived},
            )
        except RuntimeError:
            logger.warning("Audit log failed for swept time slot %s", outcome.slot_id, exc_info=True)

    if report.changed or report.failed:
        logger.info(
            "Sweep cycle done: examined=%s changed=%s failed=%s",
            report.examined,
            report.changed,
            report.failed,
        )
    return report


def create_scheduler(settings: Settings) -> AsyncIOScheduler:
    """Scheduler with the sweep job registered; start it from inside the running event loop."""
    scheduler = AsyncIOScheduler(timezone=timezone.utc)
    scheduler.add_job(
        run_sweep_cycle,
        "interval",
        seconds=settings.sweep_interval_seconds,
        id=SWEEP_JOB_ID,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(timezone.utc),
    )
    return scheduler
