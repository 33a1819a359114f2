# /chatflow/services/timer_service.py

import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from chatflow.config.settings import settings
from chatflow.models.context import ExecutionContext
from chatflow.models.flow import FlowNode
from chatflow.models.timer import DelayDecision, FireResult, TimerHandle, TimerUpdate
from chatflow.services.delay_scheduler import DelayScheduler, delay_scheduler
from chatflow.utils.alerting import alerting_service
from chatflow.utils.logging import flow_log_context

# Runs delay timers on an APScheduler event loop scheduler. The DelayScheduler
# decides; this service only turns its decisions into date jobs and hands fired
# actions back to the host.

logger = logging.getLogger(__name__)

ResumeCallback = Callable[[FireResult], Awaitable[None]]

SWEEP_JOB_ID = "delay_timer_sweep_job"


class TimerService:
    def __init__(
        self,
        scheduler: DelayScheduler,
        resume_callback: Optional[ResumeCallback] = None,
        job_scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.delay_scheduler = scheduler
        self.resume_callback = resume_callback
        self.job_scheduler = job_scheduler or AsyncIOScheduler(timezone=settings.scheduler_timezone)

    def set_resume_callback(self, callback: ResumeCallback):
        self.resume_callback = callback

    def start(self):
        if self.job_scheduler.running:
            return
        if settings.timer_sweep_interval_seconds > 0:
            self.job_scheduler.add_job(
                self.sweep_due_timers,
                'interval',
                seconds=settings.timer_sweep_interval_seconds,
                id=SWEEP_JOB_ID,
                replace_existing=True
            )
            logger.info(f"Scheduled job: sweep_due_timers (every {settings.timer_sweep_interval_seconds} seconds).")
        self.job_scheduler.start()
        logger.info("Timer service started.")

    def shutdown(self):
        if self.job_scheduler.running:
            self.job_scheduler.shutdown(wait=False)
            logger.info("Timer service stopped.")

    # ---------------- Job bookkeeping ---------------- #

    def _schedule(self, handle: TimerHandle, due_at: datetime):
        self.job_scheduler.add_job(
            self._fire,
            'date',
            run_date=due_at,
            args=[handle],
            id=handle.job_id,
            replace_existing=True,
            misfire_grace_time=settings.scheduler_misfire_grace_seconds
        )
        logger.debug(f"Job {handle.job_id} scheduled for {due_at.isoformat()}.")

    def _unschedule(self, handle: TimerHandle):
        try:
            self.job_scheduler.remove_job(handle.job_id)
        except JobLookupError:
            logger.debug(f"Job {handle.job_id} already gone.")

    async def on_timer_fire(self, handle: TimerHandle, now: Optional[datetime] = None) -> Optional[FireResult]:
        result = await self.delay_scheduler.on_timer_fire(handle, now)
        if result is not None:
            self._unschedule(handle)
        return result

    async def _fire(self, handle: TimerHandle, now: Optional[datetime] = None):
        with flow_log_context(conversation_id=handle.conversation_id, node_id=handle.node_id, timer_id=handle.timer_id):
            await self._fire_and_resume(handle, now)

    async def _fire_and_resume(self, handle: TimerHandle, now: Optional[datetime]):
        result = await self.on_timer_fire(handle, now)
        if result is None:
            return
        if self.resume_callback is None:
            logger.warning(f"Timer {handle.timer_id} fired ({result.action}) but no resume callback is registered.")
            return
        try:
            await self.resume_callback(result)
        except Exception as e:
            logger.error(f"Resuming conversation {handle.conversation_id} after timer {handle.timer_id} failed.", exc_info=True)
            await alerting_service.send_critical_alert(
                f"Timer resume failed: {e}",
                {
                    "conversation_id": handle.conversation_id,
                    "node_id": handle.node_id,
                    "timer_id": handle.timer_id,
                    "action": result.action,
                }
            )

    # ---------------- Host-facing operations ---------------- #

    async def arm_delay(self, node: FlowNode, conversation_id: str, context: ExecutionContext) -> DelayDecision:
        decision = await self.delay_scheduler.arm_delay(node, conversation_id, context)
        self._schedule(decision.timer_handle, decision.due_at)
        return decision

    async def on_user_message(self, conversation_id: str, now: Optional[datetime] = None) -> List[TimerUpdate]:
        updates = await self.delay_scheduler.on_user_message(conversation_id, now)
        for update in updates:
            if update.transition == "cancelled":
                self._unschedule(update.handle)
            else:
                self._schedule(update.handle, update.due_at)
        return updates

    async def cancel(self, conversation_id: str, node_id: Optional[str] = None) -> List[TimerHandle]:
        cancelled = await self.delay_scheduler.cancel(conversation_id, node_id)
        for handle in cancelled:
            self._unschedule(handle)
        return cancelled

    async def sweep_due_timers(self, now: Optional[datetime] = None) -> int:
        """Fire every timer that is already due; covers jobs lost to misfires."""
        handles = self.delay_scheduler.due_timers(now)
        for handle in handles:
            await self._fire(handle, now)
        if handles:
            logger.info(f"Swept {len(handles)} due timer(s).")
        return len(handles)


# Globally accessible instance
timer_service = TimerService(delay_scheduler)
