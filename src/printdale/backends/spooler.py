"""
Spooler Backend
Windows print spooler driven through SumatraPDF and PowerShell
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, List

import aiofiles

from ..errors import BackendQueryError, ProcessError, SubmissionError
from ..imposition import compose_two_up
from ..models import ColorMode, JobStatus, Margin, Orientation, Sides
from ..reconciliation import decode_spooler_flags, map_spooler_state
from .base import BackendStatus, PrintBackend, PrintOptions, parse_count

# Get-Printer PrinterStatus values meaning the device can take work
READY_PRINTER_STATES = {
    "normal", "idle", "printing", "processing", "ioactive", "busy", "powersave", "warmingup",
}

# PrinterStatus enum as returned by ConvertTo-Json
PRINTER_STATUS_NAMES = {
    0: "normal",
    1: "paused",
    2: "error",
    3: "pendingdeletion",
    4: "paperjam",
    5: "paperout",
    6: "manualfeed",
    7: "paperproblem",
    8: "offline",
    9: "ioactive",
    10: "busy",
    11: "printing",
    12: "outputbinfull",
    13: "notavailable",
    14: "waiting",
    15: "processing",
    16: "initializing",
    17: "warmingup",
    18: "tonerlow",
    19: "notoner",
    20: "pagepunt",
    21: "userintervention",
    22: "outofmemory",
    23: "dooropen",
    24: "serverunknown",
    25: "powersave",
}


def quote(value: str) -> str:
    """Single-quoted PowerShell string literal"""
    return "'" + str(value).replace("'", "''") + "'"


def _load_json(output: str) -> Any:
    text = output.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise BackendQueryError(f"Malformed PowerShell output: {e}") from e


def _first(document: Any) -> Dict[str, Any]:
    if isinstance(document, list):
        document = document[0] if document else None
    return document if isinstance(document, dict) else {}


def printer_state_name(value: Any) -> str:
    if isinstance(value, int) or str(value).strip().isdigit():
        return PRINTER_STATUS_NAMES.get(int(value), str(value))
    return str(value).strip().lower().replace(" ", "")


class SpoolerBackend(PrintBackend):
    """Local Windows spooler"""

    name = "spooler"

    def _powershell(self, script: str) -> List[str]:
        return [self.config.powershell_path, "-NoProfile", "-NonInteractive", "-Command", script]

    async def _run_script(self, script: str):
        return await self.runner.run(self._powershell(script), timeout=self.config.command_timeout)

    def build_submission(self, document_path: Path, options: PrintOptions) -> List[str]:
        cmd = [self.config.sumatra_path, "-print-to", options.printer, "-silent"]

        print_settings = [f"paper={options.paper_size}", f"{options.copies}x"]

        print_settings.append("color" if options.color_mode == ColorMode.COLOR else "monochrome")

        if options.booklet:
            print_settings.append("duplexshort")
        elif options.sides == Sides.DOUBLE:
            print_settings.append("duplexlong")
        else:
            print_settings.append("simplex")

        if options.orientation == Orientation.SIDEWAYS:
            print_settings.append("landscape")
        else:
            print_settings.append("portrait")

        if options.page_range:
            print_settings.append(options.page_range)

        if options.is_spreadsheet:
            print_settings.append("fit")
        elif options.effective_margins == Margin.NARROW:
            print_settings.append("noscale")
        else:
            print_settings.append("shrink")

        cmd.extend(["-print-settings", ",".join(print_settings)])
        cmd.append(str(document_path))
        return cmd

    async def _prepare_two_up(self, document_path: Path) -> Path:
        """Write the 2-up rendition of an imposed booklet next to the source"""
        async with aiofiles.open(document_path, 'rb') as f:
            content = await f.read()
        composed = await asyncio.to_thread(compose_two_up, content)
        target = document_path.with_name(document_path.name + ".2up.pdf")
        async with aiofiles.open(target, 'wb') as f:
            await f.write(composed)
        return target

    async def submit(self, document_path: Path, options: PrintOptions) -> str:
        document_path = Path(document_path)
        print_path = document_path
        if options.booklet:
            try:
                print_path = await self._prepare_two_up(document_path)
            except OSError as e:
                raise SubmissionError(f"Failed to prepare booklet sheets: {e}") from e

        try:
            cmd = self.build_submission(print_path, options)
            self.logger.info(f"Executing SumatraPDF command: {' '.join(cmd)}")
            try:
                await self.runner.run(cmd, timeout=self.config.command_timeout)
            except ProcessError as e:
                raise SubmissionError(f"SumatraPDF failed: {e}") from e
        finally:
            if print_path != document_path:
                self._cleanup_temp_file(print_path)

        script = (
            f"Get-PrintJob -PrinterName {quote(options.printer)} | "
            "Sort-Object SubmittedTime | Select-Object -Last 1 -ExpandProperty Id"
        )
        try:
            result = await self._run_script(script)
        except ProcessError as e:
            raise SubmissionError(f"Unable to read spooler job id: {e}") from e

        handle = result.stdout.strip()
        if not handle.isdigit():
            raise SubmissionError(f"Unable to parse spooler job id: {handle!r}")

        self.logger.info(f"Print job {handle} sent to printer {options.printer}")
        return handle

    def _cleanup_temp_file(self, path: Path):
        try:
            if os.path.exists(path):
                os.unlink(path)
        except OSError as e:
            self.logger.warning(f"Failed to remove temp file {path}: {e}")

    async def is_device_ready(self, printer: str) -> bool:
        script = (
            f"Get-Printer -Name {quote(printer)} | "
            "Select-Object Name,PrinterStatus | ConvertTo-Json"
        )
        try:
            result = await self._run_script(script)
            info = _first(_load_json(result.stdout))
        except (ProcessError, BackendQueryError) as e:
            self.logger.error(f"Printer status check failed for {printer}: {e}")
            return False

        if not info:
            self.logger.warning(f"Printer {printer} not found in spooler")
            return False

        state = printer_state_name(info.get("PrinterStatus"))
        ready = state in READY_PRINTER_STATES
        self.logger.info(f"Printer {printer} status: {state}, ready: {ready}")
        return ready

    async def query_status(self, printer: str, handle: str) -> BackendStatus:
        script = (
            f"Get-PrintJob -PrinterName {quote(printer)} -ID {int(handle)} | "
            "Select-Object JobStatus,PagesPrinted,TotalPages | ConvertTo-Json"
        )
        try:
            result = await self._run_script(script)
        except ProcessError as e:
            raise BackendQueryError(f"Get-PrintJob failed for job {handle}: {e}") from e

        info = _first(_load_json(result.stdout))
        if not info:
            raise BackendQueryError(f"Spooler job {handle} not found on {printer}")

        self.logger.debug(f"Job status {info}")
        return BackendStatus(
            native_state=decode_spooler_flags(info.get("JobStatus")) or "unknown",
            pages_completed=parse_count(info.get("PagesPrinted")),
            raw=info,
        )

    async def query_page_history(self, printer: str, handle: str) -> int:
        script = (
            f"Get-PrintJob -PrinterName {quote(printer)} -ID {int(handle)} | "
            "Select-Object -ExpandProperty TotalPages"
        )
        try:
            result = await self._run_script(script)
        except ProcessError as e:
            raise BackendQueryError(f"Get-PrintJob failed for job {handle}: {e}") from e
        return parse_count(result.stdout) or 0

    async def cancel(self, printer: str, handle: str) -> None:
        script = f"Remove-PrintJob -PrinterName {quote(printer)} -ID {int(handle)}"
        try:
            await self._run_script(script)
        except ProcessError as e:
            raise BackendQueryError(f"Remove-PrintJob failed for job {handle}: {e}") from e

    async def list_devices(self) -> List[str]:
        try:
            result = await self._run_script("Get-Printer | Select-Object -ExpandProperty Name")
        except ProcessError as e:
            raise BackendQueryError(f"Failed to enumerate printers: {e}") from e
        return [line.strip().lower() for line in result.stdout.splitlines() if line.strip()]

    def map_state(self, native_state: str) -> JobStatus:
        return map_spooler_state(native_state)
