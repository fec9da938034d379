"""
Print Backend
Interface every printer subsystem implements, plus the canonical option set
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config_manager import ServiceConfig
from ..models import (
    ColorMode,
    JobStatus,
    MARGIN_UNITS,
    Margin,
    Orientation,
    PageLayout,
    PrintJob,
    SPREADSHEET_TYPES,
    Sides,
)
from ..process_runner import ProcessRunner


@dataclass(frozen=True)
class PrintOptions:
    """Backend-agnostic submission options"""

    printer: str
    paper_size: str = "A4"
    copies: int = 1
    color_mode: ColorMode = ColorMode.GRAYSCALE
    sides: Sides = Sides.SINGLE
    orientation: Orientation = Orientation.UPRIGHT
    margins: Margin = Margin.NORMAL
    pages_to_print: str = "all"
    booklet: bool = False
    file_type: str = "pdf"
    title: str = "printdale"

    @classmethod
    def from_job(cls, job: PrintJob) -> "PrintOptions":
        return cls(
            printer=job.printer,
            paper_size=job.paper_size,
            copies=job.copies,
            color_mode=job.color_mode,
            sides=job.sides,
            orientation=job.orientation,
            margins=job.margins,
            pages_to_print=job.pages_to_print,
            booklet=job.page_layout == PageLayout.BOOKLET,
            file_type=job.file_type,
            title=f"printdale-{job.id}",
        )

    @property
    def is_spreadsheet(self) -> bool:
        return self.file_type in SPREADSHEET_TYPES

    @property
    def effective_margins(self) -> Margin:
        # Spreadsheets are always fitted to the page with normal margins
        return Margin.NORMAL if self.is_spreadsheet else self.margins

    @property
    def margin_units(self) -> int:
        return MARGIN_UNITS[self.effective_margins]

    @property
    def page_range(self) -> Optional[str]:
        return None if self.pages_to_print == "all" else self.pages_to_print


@dataclass
class BackendStatus:
    """One status observation of a submitted job, in backend terms"""

    native_state: str
    pages_completed: Optional[int] = None
    sheets_completed: Optional[int] = None
    impressions_completed: Optional[int] = None
    message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def parse_count(value: Any) -> Optional[int]:
    """Best-effort conversion of a backend counter to a non-negative int"""
    if value is None or isinstance(value, bool):
        return None
    try:
        count = int(str(value).strip())
    except ValueError:
        return None
    return count if count >= 0 else None


class PrintBackend(ABC):
    """Capability set shared by all printer subsystems"""

    name = "base"

    def __init__(self, config: ServiceConfig, runner: ProcessRunner):
        self.config = config
        self.runner = runner
        self.logger = logging.getLogger(__name__)

    @abstractmethod
    def build_submission(self, document_path: Path, options: PrintOptions) -> List[str]:
        """Native command line that submits document_path with options"""

    @abstractmethod
    async def submit(self, document_path: Path, options: PrintOptions) -> str:
        """Submit a document and return the backend job handle"""

    @abstractmethod
    async def is_device_ready(self, printer: str) -> bool:
        """True only when the device is available and accepting jobs"""

    @abstractmethod
    async def query_status(self, printer: str, handle: str) -> BackendStatus:
        """Current state and counters of a submitted job"""

    @abstractmethod
    async def query_page_history(self, printer: str, handle: str) -> int:
        """Page or sheet total from the backend's job history, 0 when unknown"""

    @abstractmethod
    async def cancel(self, printer: str, handle: str) -> None:
        """Ask the backend to drop a submitted job"""

    @abstractmethod
    async def list_devices(self) -> List[str]:
        """Names of devices known to the backend"""

    @abstractmethod
    def map_state(self, native_state: str) -> JobStatus:
        """Canonical status for a backend-native job state"""
