"""
Models
Print job records, submission requests and the enumerations they use
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    HELD = "held"
    COMPLETED = "completed"
    ABORTED = "aborted"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.ABORTED, JobStatus.CANCELED})


class ColorMode(str, Enum):
    COLOR = "color"
    GRAYSCALE = "grayscale"


class Sides(str, Enum):
    SINGLE = "single-sided"
    DOUBLE = "double-sided"


class Orientation(str, Enum):
    UPRIGHT = "portrait"
    SIDEWAYS = "landscape"


class PageLayout(str, Enum):
    NORMAL = "normal"
    BOOKLET = "booklet"


class Margin(str, Enum):
    NORMAL = "normal"
    NARROW = "narrow"


# Hundredths of a millimetre, as used by IPP media-*-margin
MARGIN_UNITS = {
    Margin.NORMAL: 720,
    Margin.NARROW: 360,
}

PAPER_SIZES = {
    "a4": "A4",
    "a3": "A3",
    "letter": "Letter",
    "legal": "Legal",
}
DEFAULT_PAPER_SIZE = "A4"

# Accepted file type tokens (extension or MIME type) -> stored extension
FILE_TYPE_EXTENSIONS = {
    "pdf": "pdf",
    "application/pdf": "pdf",
    "doc": "doc",
    "application/msword": "doc",
    "docx": "docx",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "xlsx": "xlsx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
}
SPREADSHEET_TYPES = frozenset({"xlsx"})

PAGE_SELECTION_PATTERN = re.compile(r"^(?:all|\d+|\d+-\d+)$")
EMPLOYEE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


class PrintRequest(BaseModel):
    """User-supplied parameters for one submission"""

    model_config = ConfigDict(str_strip_whitespace=True)

    employee_id: str = Field(..., min_length=1)
    employee_name: str = Field(..., min_length=1)
    file_name: str = Field(..., min_length=1)
    file_type: str
    printer: str = Field(..., min_length=1)
    paper_size: str = DEFAULT_PAPER_SIZE
    copies: int = Field(..., ge=1)
    color_mode: ColorMode = ColorMode.GRAYSCALE
    sides: Sides = Sides.SINGLE
    orientation: Orientation = Orientation.UPRIGHT
    page_layout: PageLayout = PageLayout.NORMAL
    margins: Margin = Margin.NORMAL
    pages_to_print: str = "all"
    sheets_from: Optional[int] = Field(None, ge=1)
    sheets_to: Optional[int] = Field(None, ge=1)

    @field_validator("employee_id")
    @classmethod
    def _validate_employee_id(cls, value: str) -> str:
        # used as a directory name in the document store
        if not EMPLOYEE_ID_PATTERN.match(value) or value == "." or ".." in value:
            raise ValueError("may only contain letters, digits, dots, dashes and underscores")
        return value

    @field_validator("file_type", mode="before")
    @classmethod
    def _normalize_file_type(cls, value: Any) -> str:
        key = _lower(value)
        if key not in FILE_TYPE_EXTENSIONS:
            raise ValueError("must be one of: pdf, doc, docx, xlsx, or their MIME types")
        return FILE_TYPE_EXTENSIONS[key]

    @field_validator("printer", mode="before")
    @classmethod
    def _normalize_printer(cls, value: Any) -> Any:
        return _lower(value)

    @field_validator("paper_size", mode="before")
    @classmethod
    def _normalize_paper_size(cls, value: Any) -> str:
        if value is None or value == "":
            return DEFAULT_PAPER_SIZE
        key = _lower(value)
        if key not in PAPER_SIZES:
            raise ValueError("must be one of: A4, A3, Letter, Legal")
        return PAPER_SIZES[key]

    @field_validator("color_mode", mode="before")
    @classmethod
    def _normalize_color_mode(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return ColorMode.COLOR if value else ColorMode.GRAYSCALE
        key = _lower(value)
        if key in ("true", "1", "yes"):
            return ColorMode.COLOR
        if key in ("false", "0", "no"):
            return ColorMode.GRAYSCALE
        return key

    @field_validator("sides", "orientation", "page_layout", "margins", mode="before")
    @classmethod
    def _normalize_enum(cls, value: Any) -> Any:
        return _lower(value)

    @field_validator("pages_to_print", mode="before")
    @classmethod
    def _validate_pages_to_print(cls, value: Any) -> str:
        text = _lower(value) if value is not None else "all"
        if isinstance(text, int):
            text = str(text)
        if not isinstance(text, str) or not PAGE_SELECTION_PATTERN.match(text):
            raise ValueError('must be "all", a page number (e.g. "3") or a range (e.g. "1-5")')
        if text == "all":
            return text
        if "-" in text:
            start, end = (int(part) for part in text.split("-", 1))
            if start < 1 or end < start:
                raise ValueError(f"invalid page range {text}: start must be >= 1 and end >= start")
        elif int(text) < 1:
            raise ValueError("page number must be a positive integer")
        return text

    @property
    def is_booklet(self) -> bool:
        return self.page_layout == PageLayout.BOOKLET

    @classmethod
    def from_form(cls, data: Dict[str, Any]) -> "PrintRequest":
        """Build a request, reporting every invalid field in one ValidationError"""
        cleaned = {key: value for key, value in data.items() if value is not None and value != ""}
        try:
            return cls(**cleaned)
        except PydanticValidationError as exc:
            errors: Dict[str, str] = {}
            for error in exc.errors():
                field = ".".join(str(part) for part in error.get("loc", ())) or "request"
                message = error.get("msg", "invalid value")
                errors[field] = message.replace("Value error, ", "")
            raise ValidationError(
                "Validation failed: " + ", ".join(f"{k}: {v}" for k, v in errors.items()),
                errors,
            ) from exc


class PrintJob(BaseModel):
    """Persisted print job record"""

    id: str
    employee_id: str
    employee_name: str
    file_name: str
    file_type: str
    printer: str
    paper_size: str
    copies: int
    color_mode: ColorMode
    sides: Sides
    orientation: Orientation
    page_layout: PageLayout
    margins: Margin
    pages_to_print: str
    sheets_from: Optional[int] = None
    sheets_to: Optional[int] = None
    pages: int

    status: JobStatus = JobStatus.PENDING
    job_handle: Optional[str] = None
    job_start_time: Optional[datetime] = None
    job_end_time: Optional[datetime] = None
    error_message: Optional[str] = None
    pages_printed: int = 0
    file_path: Optional[str] = None

    created_by: str
    updated_by: str
    created_at: datetime
    updated_at: datetime

    @property
    def is_booklet(self) -> bool:
        return self.page_layout == PageLayout.BOOKLET

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
