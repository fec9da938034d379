"""
Document Converter
Normalizes uploaded documents into PDF before counting and printing
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

import aiofiles

from .errors import ConversionError, ProcessError
from .process_runner import ProcessRunner

PDF_SIGNATURE = b"%PDF"


class DocumentConverter:
    """Converts office documents to PDF with a headless LibreOffice"""

    def __init__(
        self,
        runner: ProcessRunner,
        soffice_path: str = "soffice",
        timeout: float = 120.0,
        temp_directory: Optional[str] = None,
    ):
        self.runner = runner
        self.soffice_path = soffice_path
        self.timeout = timeout
        self.temp_directory = temp_directory
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def is_pdf(content: bytes) -> bool:
        return content[:len(PDF_SIGNATURE)] == PDF_SIGNATURE

    async def to_pdf(self, content: bytes, file_type: str) -> bytes:
        """Return content as PDF bytes; PDFs are passed through after a signature check"""
        if not content:
            raise ConversionError("Uploaded document is empty")

        if file_type == "pdf":
            if not self.is_pdf(content):
                raise ConversionError("Uploaded file is not a valid PDF document")
            return content

        if self.temp_directory:
            os.makedirs(self.temp_directory, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix="printdale-", dir=self.temp_directory))
        try:
            source = work_dir / f"source.{file_type}"
            async with aiofiles.open(source, 'wb') as f:
                await f.write(content)

            cmd = [
                self.soffice_path,
                "--headless",
                "--convert-to", "pdf",
                "--outdir", str(work_dir),
                str(source),
            ]
            self.logger.info(f"Converting {file_type} document to PDF")
            try:
                await self.runner.run(cmd, timeout=self.timeout)
            except ProcessError as e:
                raise ConversionError(f"Document conversion failed: {e}") from e

            output = source.with_suffix(".pdf")
            try:
                async with aiofiles.open(output, 'rb') as f:
                    converted = await f.read()
            except OSError as e:
                raise ConversionError(f"Converter produced no output: {e}") from e

            if not self.is_pdf(converted):
                raise ConversionError("Converter output is not a valid PDF document")

            self.logger.info(f"Converted {file_type} document ({len(converted)} bytes)")
            return converted

        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
