"""
Job Manager
Validates, prepares and dispatches print jobs, and answers job queries
"""

import asyncio
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from .backends import PrintBackend, PrintOptions
from .converter import DocumentConverter
from .document_store import DocumentStore
from .errors import DeviceUnavailableError, JobNotFoundError, PrintServiceError, ValidationError
from .imposition import count_pages, impose_booklet
from .job_store import JobStore
from .models import JobStatus, Orientation, PrintJob, PrintRequest
from .notifier import ConnectionManager
from .printer_manager import PrinterManager
from .status_monitor import SYSTEM_USER, StatusMonitor

CANCELED_MESSAGE = "Canceled by request"


class JobManager:
    """Runs the submission pipeline and hands submitted jobs to the status monitor"""

    def __init__(
        self,
        store: JobStore,
        document_store: DocumentStore,
        converter: DocumentConverter,
        backend: PrintBackend,
        printer_manager: PrinterManager,
        monitor: StatusMonitor,
        notifier: ConnectionManager,
    ):
        self.store = store
        self.document_store = document_store
        self.converter = converter
        self.backend = backend
        self.printer_manager = printer_manager
        self.monitor = monitor
        self.notifier = notifier
        self.logger = logging.getLogger(__name__)

        self._dispatch_tasks: Set[asyncio.Task] = set()

        # Performance tracking
        self.jobs_received = 0
        self.jobs_submitted = 0
        self.jobs_aborted = 0
        self.jobs_canceled = 0
        self.total_preparation_time = 0.0

    def _validate(self, request: PrintRequest):
        errors: Dict[str, str] = {}

        if not self.printer_manager.is_enabled(request.printer):
            available = ", ".join(self.printer_manager.printers) or "none"
            errors["printer"] = f"printer {request.printer} is not enabled (available: {available})"

        has_sheets = request.sheets_from is not None or request.sheets_to is not None
        if has_sheets and not request.is_booklet:
            errors["sheets_from"] = "sheet range is only allowed with booklet layout"
        elif (
            request.sheets_from is not None
            and request.sheets_to is not None
            and request.sheets_from > request.sheets_to
        ):
            errors["sheets_from"] = "sheetsFrom must be less than or equal to sheetsTo"

        if errors:
            raise ValidationError(
                "Validation failed: " + ", ".join(f"{k}: {v}" for k, v in errors.items()),
                errors,
            )

    async def submit_job(self, request: PrintRequest, file_bytes: bytes) -> PrintJob:
        """Create a job and schedule it for printing

        Validation and conversion errors are raised before any job exists.
        The returned job is Pending; dispatch continues in the background.
        """
        start_time = time.time()
        self.jobs_received += 1

        self._validate(request)

        document = await self.converter.to_pdf(file_bytes, request.file_type)

        pages = await asyncio.to_thread(count_pages, document)
        if pages < 1:
            raise ValidationError.for_field("file", "document has no pages")

        orientation = request.orientation
        if request.is_booklet:
            orientation = Orientation.SIDEWAYS
            self.logger.info("Overriding orientation to landscape for booklet mode")
            imposed = await asyncio.to_thread(
                impose_booklet, document, request.sheets_from, request.sheets_to
            )
            document = imposed.document

        now = datetime.now()
        job = PrintJob(
            id=uuid4().hex,
            employee_id=request.employee_id,
            employee_name=request.employee_name,
            file_name=request.file_name,
            file_type=request.file_type,
            printer=request.printer,
            paper_size=request.paper_size,
            copies=request.copies,
            color_mode=request.color_mode,
            sides=request.sides,
            orientation=orientation,
            page_layout=request.page_layout,
            margins=request.margins,
            pages_to_print=request.pages_to_print,
            sheets_from=request.sheets_from,
            sheets_to=request.sheets_to,
            pages=pages,
            status=JobStatus.PENDING,
            created_by=request.employee_id,
            updated_by=request.employee_id,
            created_at=now,
            updated_at=now,
        )
        job = await self.store.create(job)

        try:
            path = await self.document_store.save(job, document)
        except OSError as e:
            self.logger.error(f"Failed to store document for job {job.id}: {e}")
            return await self._abort(job, f"Failed to store document: {e}")

        job = await self.store.update_fields(job.id, file_path=str(path))

        preparation_time = time.time() - start_time
        self.total_preparation_time += preparation_time
        self.logger.info(
            f"Created job {job.id} for {job.employee_id}: {job.file_name}, {pages} pages, "
            f"{job.copies} copies on {job.printer} ({preparation_time*1000:.0f}ms)"
        )

        await self.notifier.broadcast_job_created(job)

        task = asyncio.create_task(self._dispatch(job), name=f"dispatch-{job.id}")
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

        return job

    async def _dispatch(self, job: PrintJob):
        """Check the device, submit, and start monitoring; failures abort the job"""
        try:
            if not await self.printer_manager.is_printer_available(job.printer):
                raise DeviceUnavailableError(f"Printer {job.printer} is offline or not accepting jobs")

            options = PrintOptions.from_job(job)
            handle = await self.backend.submit(Path(job.file_path), options)

        except PrintServiceError as e:
            self.logger.error(f"Failed to send job {job.id} to printer: {e}")
            await self._abort(job, str(e))
            return
        except Exception as e:
            self.logger.exception(f"Unexpected error dispatching job {job.id}: {e}")
            await self._abort(job, f"Unexpected error: {e}")
            return

        job = await self.store.update_active(job.id, job_handle=handle, updated_by=SYSTEM_USER)
        if job.is_terminal:
            self.logger.warning(f"Job {job.id} became {job.status.value} during submission, cancelling handle {handle}")
            await self._cancel_on_backend(job.printer, handle)
            return

        self.jobs_submitted += 1
        self.monitor.start(job, handle)

    async def _abort(self, job: PrintJob, message: str) -> PrintJob:
        updated = await self.store.update_active(
            job.id,
            status=JobStatus.ABORTED,
            error_message=message,
            job_end_time=datetime.now(),
            updated_by=SYSTEM_USER,
        )
        if updated.status != JobStatus.ABORTED:
            return updated

        self.jobs_aborted += 1
        self.logger.info(f"Job {job.id} status {job.status.value} -> aborted: {message}")
        await self.notifier.broadcast_job_updated(updated)
        return updated

    async def _cancel_on_backend(self, printer: str, handle: str):
        try:
            await self.backend.cancel(printer, handle)
        except PrintServiceError as e:
            self.logger.warning(f"Backend cancel failed for {printer}-{handle}: {e}")

    async def cancel_job(self, job_id: str, requested_by: Optional[str] = None) -> PrintJob:
        """Mark a job Canceled, stop monitoring it and cancel it on the backend

        A job that already reached a terminal state is returned unchanged.
        """
        job = await self.get_job(job_id)
        if job.is_terminal:
            return job

        updated = await self.store.update_active(
            job_id,
            status=JobStatus.CANCELED,
            error_message=CANCELED_MESSAGE,
            job_end_time=datetime.now(),
            updated_by=requested_by or SYSTEM_USER,
        )
        if updated.status != JobStatus.CANCELED:
            return updated

        await self.monitor.stop(job_id)
        if updated.job_handle:
            await self._cancel_on_backend(updated.printer, updated.job_handle)

        self.jobs_canceled += 1
        self.logger.info(f"Job {job_id} status {job.status.value} -> canceled")
        await self.notifier.broadcast_job_updated(updated)
        return updated

    async def get_job(self, job_id: str) -> PrintJob:
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs_by_requester(self, employee_id: str) -> List[PrintJob]:
        return await self.store.list_by_requester(employee_id)

    async def list_all_jobs(self) -> List[PrintJob]:
        return await self.store.list_all()

    async def wait_for_dispatches(self):
        """Wait for in-flight background dispatches to finish"""
        if self._dispatch_tasks:
            await asyncio.gather(*list(self._dispatch_tasks), return_exceptions=True)

    async def shutdown(self):
        for task in list(self._dispatch_tasks):
            task.cancel()
        await self.wait_for_dispatches()
        await self.monitor.stop_all()
        self.logger.info("Job manager stopped")

    def get_status(self) -> Dict[str, Any]:
        avg_preparation = (
            self.total_preparation_time / self.jobs_received * 1000 if self.jobs_received else 0
        )
        return {
            "backend": self.backend.name,
            "jobs_received": self.jobs_received,
            "jobs_submitted": self.jobs_submitted,
            "jobs_aborted": self.jobs_aborted,
            "jobs_canceled": self.jobs_canceled,
            "pending_dispatches": len(self._dispatch_tasks),
            "average_preparation_ms": round(avg_preparation, 1),
            "monitor": self.monitor.get_status(),
        }
