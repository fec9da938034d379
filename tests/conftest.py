"""
Pytest configuration and fixtures for Printdale tests.
"""

import asyncio
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

import pytest
from pypdf import PdfWriter

from printdale.backends import BackendStatus, PrintBackend, PrintOptions
from printdale.config_manager import ServiceConfig
from printdale.converter import DocumentConverter
from printdale.document_store import DocumentStore
from printdale.errors import ProcessError
from printdale.job_manager import JobManager
from printdale.job_store import JobStore
from printdale.models import (
    ColorMode,
    JobStatus,
    Margin,
    Orientation,
    PageLayout,
    PrintJob,
    Sides,
)
from printdale.notifier import ConnectionManager
from printdale.printer_manager import PrinterManager
from printdale.process_runner import ProcessResult
from printdale.reconciliation import map_cups_state
from printdale.status_monitor import StatusMonitor

PRINTER = "ricoh-m2701"


def build_pdf(page_count: int, width: float = 595, height: float = 842, widths: Optional[Sequence[float]] = None) -> bytes:
    """PDF with page_count blank pages; widths gives each page its own width"""
    writer = PdfWriter()
    for index in range(page_count):
        page_width = widths[index] if widths else width
        writer.add_blank_page(width=page_width, height=height)
    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


class FakeRunner:
    """ProcessRunner stand-in returning queued outputs

    Each queued item is stdout text, an exception to raise, or a callable
    receiving the command and returning stdout.
    """

    def __init__(self, outputs: Optional[List[Any]] = None):
        self.outputs = list(outputs or [])
        self.calls: List[List[str]] = []

    def queue(self, *outputs: Any):
        self.outputs.extend(outputs)

    async def run(self, command, timeout=None, check=True) -> ProcessResult:
        cmd = [str(part) for part in command]
        self.calls.append(cmd)
        item = self.outputs.pop(0) if self.outputs else ""
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(cmd)
        return ProcessResult(command=cmd, returncode=0, stdout=item, stderr="")


class FakeBackend(PrintBackend):
    """In-memory backend with scripted readiness, handles and statuses"""

    name = "fake"

    def __init__(self, config: ServiceConfig):
        super().__init__(config, FakeRunner())
        self.ready = True
        self.handle = "42"
        self.submit_error: Optional[Exception] = None
        self.statuses: List[Any] = [BackendStatus("completed", pages_completed=1)]
        self.history: Any = 0
        self.submitted: List[PrintOptions] = []
        self.submitted_paths: List[Path] = []
        self.queries: List[str] = []
        self.cancelled: List[str] = []
        self.devices = [PRINTER]

    def build_submission(self, document_path, options):
        return ["fake-print", str(document_path)]

    async def submit(self, document_path, options):
        if self.submit_error:
            raise self.submit_error
        self.submitted.append(options)
        self.submitted_paths.append(Path(document_path))
        return self.handle

    async def is_device_ready(self, printer):
        return self.ready

    async def query_status(self, printer, handle):
        self.queries.append(handle)
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def query_page_history(self, printer, handle):
        if isinstance(self.history, Exception):
            raise self.history
        return self.history

    async def cancel(self, printer, handle):
        self.cancelled.append(handle)

    async def list_devices(self):
        return list(self.devices)

    def map_state(self, native_state):
        return map_cups_state(native_state)


class RecordingNotifier(ConnectionManager):
    """Notifier that records every broadcast instead of sending it"""

    def __init__(self):
        super().__init__()
        self.events: List[Dict[str, Any]] = []

    async def broadcast(self, event: str, data: Any):
        self.events.append({"type": event, "data": data})
        await super().broadcast(event, data)

    def of_type(self, event: str) -> List[Any]:
        return [e["data"] for e in self.events if e["type"] == event]


@pytest.fixture
def make_pdf() -> Callable[..., bytes]:
    return build_pdf


@pytest.fixture
def service_config(tmp_path) -> ServiceConfig:
    return ServiceConfig(
        backend="cups",
        printers=(PRINTER,),
        upload_base_path=str(tmp_path / "uploads"),
        database_path=str(tmp_path / "data" / "jobs.db"),
        temp_directory=str(tmp_path / "temp"),
        cups_page_log=str(tmp_path / "page_log"),
        poll_interval=0,
        max_poll_duration=60,
        startup_retries=2,
        startup_backoff=0,
        log_directory=str(tmp_path / "logs"),
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_backend(service_config) -> FakeBackend:
    return FakeBackend(service_config)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def job_store(service_config) -> JobStore:
    return JobStore(service_config.database_path)


@pytest.fixture
def printer_manager(service_config, fake_backend, notifier) -> PrinterManager:
    return PrinterManager(service_config, fake_backend, notifier)


@pytest.fixture
def monitor(job_store, fake_backend, notifier, service_config) -> StatusMonitor:
    return StatusMonitor(job_store, fake_backend, notifier, service_config)


@pytest.fixture
def job_manager(job_store, service_config, fake_runner, fake_backend, printer_manager, monitor, notifier) -> JobManager:
    return JobManager(
        store=job_store,
        document_store=DocumentStore(service_config.upload_base_path),
        converter=DocumentConverter(fake_runner, temp_directory=service_config.temp_directory),
        backend=fake_backend,
        printer_manager=printer_manager,
        monitor=monitor,
        notifier=notifier,
    )


@pytest.fixture
def make_job() -> Callable[..., PrintJob]:
    """Factory for PrintJob records with sensible defaults"""

    def _make_job(**overrides) -> PrintJob:
        now = datetime.now()
        fields = dict(
            id=overrides.pop("id", None) or uuid4().hex,
            employee_id="E100",
            employee_name="Ada Lovelace",
            file_name="report.pdf",
            file_type="pdf",
            printer=PRINTER,
            paper_size="A4",
            copies=1,
            color_mode=ColorMode.GRAYSCALE,
            sides=Sides.SINGLE,
            orientation=Orientation.UPRIGHT,
            page_layout=PageLayout.NORMAL,
            margins=Margin.NORMAL,
            pages_to_print="all",
            pages=4,
            status=JobStatus.PENDING,
            created_by="E100",
            updated_by="E100",
            created_at=now,
            updated_at=now,
        )
        fields.update(overrides)
        return PrintJob(**fields)

    return _make_job


async def wait_for_monitors(monitor: StatusMonitor):
    """Wait until every running monitor task has finished"""
    tasks = list(monitor.tasks.values())
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


def process_error(message: str = "boom") -> ProcessError:
    return ProcessError(message, command=["cmd"], returncode=1, stderr=message)
