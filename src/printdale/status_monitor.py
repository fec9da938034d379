"""
Status Monitor
Per-job polling tasks that reconcile backend state into the job store
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from .backends import PrintBackend
from .config_manager import ServiceConfig
from .errors import PrintServiceError
from .job_store import JobStore
from .models import JobStatus, PrintJob
from .notifier import ConnectionManager
from .reconciliation import describe_terminal_error, reconcile_pages_printed

SYSTEM_USER = "system"


class StatusMonitor:
    """Polls the backend for each submitted job until it reaches a terminal state"""

    def __init__(self, store: JobStore, backend: PrintBackend, notifier: ConnectionManager, config: ServiceConfig):
        self.store = store
        self.backend = backend
        self.notifier = notifier
        self.poll_interval = config.poll_interval
        self.max_poll_duration = config.max_poll_duration
        self.logger = logging.getLogger(__name__)

        self.tasks: Dict[str, asyncio.Task] = {}

        # Performance tracking
        self.total_polls = 0
        self.query_errors = 0
        self.timeouts = 0
        self.finished: Dict[str, int] = {status.value: 0 for status in JobStatus if status.is_terminal}

    def start(self, job: PrintJob, handle: str) -> asyncio.Task:
        """Start polling job under the given backend handle"""
        existing = self.tasks.get(job.id)
        if existing and not existing.done():
            return existing

        task = asyncio.create_task(self._run(job.id, handle), name=f"monitor-{job.id}")
        self.tasks[job.id] = task
        task.add_done_callback(lambda t, job_id=job.id: self._forget(job_id, t))
        self.logger.info(f"Monitoring job {job.id} (handle {handle}) every {self.poll_interval}s")
        return task

    def _forget(self, job_id: str, task: asyncio.Task):
        if self.tasks.get(job_id) is task:
            del self.tasks[job_id]

    def is_monitoring(self, job_id: str) -> bool:
        task = self.tasks.get(job_id)
        return task is not None and not task.done()

    async def _run(self, job_id: str, handle: str):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_poll_duration

        try:
            while True:
                job = await self.poll_once(job_id, handle)
                if job is None or job.is_terminal:
                    return

                if loop.time() >= deadline:
                    await self._time_out(job)
                    return

                await asyncio.sleep(self.poll_interval)

        except asyncio.CancelledError:
            self.logger.debug(f"Monitoring of job {job_id} cancelled")
            raise
        except Exception as e:
            self.logger.exception(f"Unexpected error monitoring job {job_id}: {e}")
            await self._abandon(job_id, f"Unexpected error while monitoring: {e}")

    async def _abandon(self, job_id: str, message: str):
        job = await self.store.get(job_id)
        if job is not None and not job.is_terminal:
            await self._finish(job, JobStatus.ABORTED, message)

    async def poll_once(self, job_id: str, handle: Optional[str] = None) -> Optional[PrintJob]:
        """Query the backend once and persist the observation

        A job already in a terminal state is returned untouched.
        """
        job = await self.store.get(job_id)
        if job is None:
            self.logger.warning(f"Job {job_id} disappeared from the store, stopping monitor")
            return None
        if job.is_terminal:
            return job

        handle = handle or job.job_handle
        self.total_polls += 1

        try:
            backend_status = await self.backend.query_status(job.printer, handle)
        except PrintServiceError as e:
            self.query_errors += 1
            self.logger.error(f"Status query failed for job {job_id} (handle {handle}): {e}")
            return await self._finish(job, JobStatus.ABORTED, str(e), handle=handle)

        status = self.backend.map_state(backend_status.native_state)
        now = datetime.now()
        fields: Dict[str, Any] = {
            "status": status,
            "job_handle": handle,
            "updated_by": SYSTEM_USER,
        }

        if status == JobStatus.PROCESSING and job.job_start_time is None:
            fields["job_start_time"] = now

        if status.is_terminal:
            fields["job_end_time"] = now
            error = describe_terminal_error(status, backend_status)
            if error:
                fields["error_message"] = error
            if status == JobStatus.COMPLETED:
                count = await reconcile_pages_printed(job, backend_status, self.backend, handle)
                fields["pages_printed"] = count.pages

        updated = await self.store.update_active(job_id, **fields)
        if updated.status != status:
            self.logger.info(f"Job {job_id} finished as {updated.status.value} while polling, dropping {status.value}")
            return updated

        if status != job.status:
            self.logger.info(
                f"Job {job_id} status {job.status.value} -> {status.value} "
                f"(native: {backend_status.native_state})"
            )
        if status.is_terminal:
            self.finished[status.value] += 1

        await self.notifier.broadcast_job_updated(updated)
        return updated

    async def _finish(self, job: PrintJob, status: JobStatus, error: str, handle: Optional[str] = None) -> PrintJob:
        fields: Dict[str, Any] = {
            "status": status,
            "job_end_time": datetime.now(),
            "error_message": error,
            "updated_by": SYSTEM_USER,
        }
        if handle:
            fields["job_handle"] = handle

        updated = await self.store.update_active(job.id, **fields)
        if updated.status != status:
            return updated

        self.finished[status.value] += 1
        self.logger.info(f"Job {job.id} status {job.status.value} -> {status.value}: {error}")

        await self.notifier.broadcast_job_updated(updated)
        return updated

    async def _time_out(self, job: PrintJob):
        self.timeouts += 1
        message = f"Timed out after {self.max_poll_duration:.0f} seconds waiting for printer"
        self.logger.warning(f"Job {job.id}: {message}")
        await self._finish(job, JobStatus.ABORTED, message)

    async def stop(self, job_id: str) -> bool:
        """Cancel the polling task for one job; the stored status is left as is"""
        task = self.tasks.pop(job_id, None)
        if task is None or task.done():
            return False

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.logger.info(f"Stopped monitoring job {job_id}")
        return True

    async def stop_all(self):
        """Cancel every polling task, used on shutdown"""
        tasks = list(self.tasks.values())
        self.tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            self.logger.info(f"Stopped {len(tasks)} job monitors")

    def get_status(self) -> Dict[str, Any]:
        return {
            "active_monitors": sum(1 for task in self.tasks.values() if not task.done()),
            "poll_interval": self.poll_interval,
            "max_poll_duration": self.max_poll_duration,
            "total_polls": self.total_polls,
            "query_errors": self.query_errors,
            "timeouts": self.timeouts,
            "finished": dict(self.finished),
        }
