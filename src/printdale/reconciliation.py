"""
Status Reconciliation
Canonical state mapping and pages-printed fallback chain
"""

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, Optional, Union

from .errors import PrintServiceError
from .models import JobStatus, PrintJob, Sides

if TYPE_CHECKING:
    from .backends.base import BackendStatus, PrintBackend

logger = logging.getLogger(__name__)

# IPP job-state (RFC 8011 section 5.3.7)
CUPS_STATE_ENUM: Dict[int, str] = {
    3: "pending",
    4: "pending-held",
    5: "processing",
    6: "processing-stopped",
    7: "canceled",
    8: "aborted",
    9: "completed",
}

CUPS_STATE_MAP: Dict[str, JobStatus] = {
    "pending": JobStatus.PENDING,
    "pending-held": JobStatus.HELD,
    "processing": JobStatus.PROCESSING,
    "processing-stopped": JobStatus.HELD,
    "canceled": JobStatus.CANCELED,
    "cancelled": JobStatus.CANCELED,
    "aborted": JobStatus.ABORTED,
    "completed": JobStatus.COMPLETED,
}

# Windows spooler JOB_STATUS_* flags
SPOOLER_STATUS_FLAGS: Dict[int, str] = {
    0x0001: "paused",
    0x0002: "error",
    0x0004: "deleting",
    0x0008: "spooling",
    0x0010: "printing",
    0x0020: "offline",
    0x0040: "paperout",
    0x0080: "printed",
    0x0100: "deleted",
    0x0200: "blocked",
    0x0400: "userintervention",
    0x0800: "restarted",
    0x1000: "complete",
    0x2000: "retained",
}

SPOOLER_TOKEN_MAP: Dict[str, JobStatus] = {
    "printing": JobStatus.PROCESSING,
    "spooling": JobStatus.PROCESSING,
    "processing": JobStatus.PROCESSING,
    "restarted": JobStatus.PROCESSING,
    "restart": JobStatus.PROCESSING,
    "printed": JobStatus.COMPLETED,
    "completed": JobStatus.COMPLETED,
    "complete": JobStatus.COMPLETED,
    "error": JobStatus.ABORTED,
    "offline": JobStatus.ABORTED,
    "paperout": JobStatus.ABORTED,
    "blocked": JobStatus.ABORTED,
    "blockeddevq": JobStatus.ABORTED,
    "userintervention": JobStatus.ABORTED,
    "paused": JobStatus.HELD,
    "deleting": JobStatus.CANCELED,
    "deleted": JobStatus.CANCELED,
    "normal": JobStatus.PENDING,
    "retained": JobStatus.PENDING,
}

# Highest first: a job that is both "printing" and "deleting" is being canceled
STATUS_PRECEDENCE = (
    JobStatus.CANCELED,
    JobStatus.ABORTED,
    JobStatus.COMPLETED,
    JobStatus.HELD,
    JobStatus.PROCESSING,
    JobStatus.PENDING,
)


def normalize_cups_state(native: Union[str, int, None]) -> str:
    if native is None:
        return "unknown"
    text = str(native).strip().lower()
    if text.isdigit():
        return CUPS_STATE_ENUM.get(int(text), text)
    return text


def map_cups_state(native: Union[str, int, None]) -> JobStatus:
    """Canonical status for an IPP job-state keyword or enum value"""
    return CUPS_STATE_MAP.get(normalize_cups_state(native), JobStatus.PENDING)


def decode_spooler_flags(value: Union[str, int, None]) -> str:
    """Render a JobStatus value (bit flags or text) as comma-separated tokens"""
    if value is None:
        return ""
    if isinstance(value, int) or str(value).strip().isdigit():
        flags = int(value)
        if flags == 0:
            return "normal"
        return ", ".join(name for bit, name in SPOOLER_STATUS_FLAGS.items() if flags & bit)
    return str(value).strip()


def _spooler_tokens(native: str) -> Iterable[str]:
    for token in native.replace("|", ",").split(","):
        token = token.strip().lower().replace(" ", "").replace("_", "").replace("-", "")
        if token:
            yield token


def map_spooler_state(native: Union[str, int, None]) -> JobStatus:
    """Canonical status for a Windows spooler JobStatus value"""
    text = decode_spooler_flags(native)
    found = {SPOOLER_TOKEN_MAP[token] for token in _spooler_tokens(text) if token in SPOOLER_TOKEN_MAP}
    for status in STATUS_PRECEDENCE:
        if status in found:
            return status
    return JobStatus.PENDING


def pages_per_sheet(job: PrintJob) -> int:
    """Logical pages carried by one reported sheet"""
    if job.is_booklet:
        return 1
    if job.sides == Sides.DOUBLE:
        return 2
    return 1


@dataclass(frozen=True)
class PageCount:
    pages: int
    source: str


def _positive(value: Optional[int]) -> bool:
    return value is not None and value > 0


async def reconcile_pages_printed(
    job: PrintJob,
    status: "BackendStatus",
    backend: "PrintBackend",
    handle: Optional[str] = None,
) -> PageCount:
    """Pages printed for a completed job; the first positive source wins"""
    handle = handle or job.job_handle
    factor = pages_per_sheet(job)

    if _positive(status.pages_completed):
        primary, source = status.pages_completed, "pages-completed"
    elif _positive(status.impressions_completed):
        primary, source = status.impressions_completed, "impressions-completed"
    else:
        primary, source = None, None

    if primary is not None:
        if job.is_booklet:
            pages = math.ceil(primary / 4) * job.copies
        else:
            pages = primary * job.copies
        logger.info(
            f"Pages printed for job {handle}: {pages} "
            f"({source}: {primary}, copies: {job.copies})"
        )
        return PageCount(pages, source)

    logger.warning(f"pages-completed and impressions-completed missing for job {handle}, trying sheets-completed")

    if _positive(status.sheets_completed):
        pages = status.sheets_completed * factor * job.copies
        logger.info(
            f"Calculated pagesCompleted: {pages} "
            f"(sheetsCompleted: {status.sheets_completed}, pagesPerSheet: {factor}, copies: {job.copies})"
        )
        return PageCount(pages, "sheets-completed")

    history = 0
    if handle:
        try:
            history = await backend.query_page_history(job.printer, handle)
        except PrintServiceError as e:
            logger.error(f"Failed to get page count from job history for job {handle}: {e}")
            history = 0

    if _positive(history):
        pages = history * factor * job.copies
        logger.info(
            f"Calculated pagesCompleted from history: {pages} "
            f"(history: {history}, pagesPerSheet: {factor}, copies: {job.copies})"
        )
        return PageCount(pages, "history")

    logger.warning(f"No reliable page count for job {handle}, defaulting pages printed to 0")
    return PageCount(0, "none")


def describe_terminal_error(status: JobStatus, backend_status: "BackendStatus") -> Optional[str]:
    """Error message stored with Aborted/Canceled jobs, None otherwise"""
    if status not in (JobStatus.ABORTED, JobStatus.CANCELED):
        return None
    if backend_status.message:
        return backend_status.message
    return f"Job status: {backend_status.native_state}"
