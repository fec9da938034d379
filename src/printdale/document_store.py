"""
Document Store
Keeps the exact bytes submitted to the printer for each job
"""

import logging
import os
from pathlib import Path

import aiofiles

from .models import PrintJob


class DocumentStore:
    """Filesystem store laid out as <base>/<employee_id>/<YYYY-MM-DD>/<job_id>.<ext>"""

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)
        self.logger = logging.getLogger(__name__)

    def path_for(self, job: PrintJob, extension: str = "pdf") -> Path:
        day = job.created_at.strftime("%Y-%m-%d")
        return self.base_path / job.employee_id / day / f"{job.id}.{extension}"

    async def save(self, job: PrintJob, content: bytes, extension: str = "pdf") -> Path:
        path = self.path_for(job, extension)
        if not path.resolve().is_relative_to(self.base_path.resolve()):
            raise PermissionError(f"Refusing to store job {job.id} outside {self.base_path}: {path}")
        path.parent.mkdir(parents=True, exist_ok=True)

        async with aiofiles.open(path, 'wb') as f:
            await f.write(content)

        self.logger.debug(f"Stored document for job {job.id} at {path}")
        return path

    async def delete(self, path: str) -> None:
        try:
            if os.path.exists(path):
                os.unlink(path)
        except OSError as e:
            self.logger.warning(f"Failed to delete stored document {path}: {e}")
