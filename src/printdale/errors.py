"""
Errors
Exception hierarchy shared by the print pipeline
"""

from typing import Dict, Optional, Sequence


class PrintServiceError(Exception):
    """Base class for all print service errors"""


class ValidationError(PrintServiceError):
    """Submission rejected before any job record was created"""

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.errors: Dict[str, str] = dict(errors or {})

    @classmethod
    def for_field(cls, field: str, reason: str) -> "ValidationError":
        return cls(f"Validation failed: {field}: {reason}", {field: reason})

    def to_dict(self) -> Dict[str, object]:
        return {"message": self.message, "errors": self.errors}


class ConversionError(PrintServiceError):
    """Source document could not be normalized into a PDF"""


class DeviceUnavailableError(PrintServiceError):
    """Target printer is offline or not accepting jobs"""


class SubmissionError(PrintServiceError):
    """Backend refused the job or returned an unusable job handle"""


class BackendQueryError(PrintServiceError):
    """Status query against the backend failed"""


class JobNotFoundError(PrintServiceError):
    """No job record exists for the given id"""

    def __init__(self, job_id: str):
        super().__init__(f"Print job {job_id} not found")
        self.job_id = job_id


class ProcessError(PrintServiceError):
    """External command failed, timed out or could not be started"""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.command = list(command or [])
        self.returncode = returncode
        self.stderr = stderr
