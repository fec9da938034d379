"""
CUPS Backend
Submits and tracks jobs through the CUPS command line tools and ipptool
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles

from ..errors import BackendQueryError, ProcessError, SubmissionError
from ..models import ColorMode, JobStatus, Orientation, Sides
from ..reconciliation import map_cups_state, normalize_cups_state
from .base import BackendStatus, PrintBackend, PrintOptions, parse_count

REQUEST_ID_PATTERN = re.compile(r"request id is\s+(?P<queue>\S+)-(?P<job>\d+)")

# printer user job-id [date] page-or-"total" count ...
PAGE_LOG_PATTERN = re.compile(
    r"^(?P<printer>\S+)\s+(?P<user>\S+)\s+(?P<job>\d+)\s+\[[^\]]*\]\s+(?P<page>\S+)\s+(?P<count>\d+)"
)

STATUS_ATTRIBUTES = (
    "job-state",
    "job-pages-completed",
    "pages-completed",
    "job-impressions-completed",
    "job-media-sheets-completed",
    "job-printer-state-message",
    "job-state-message",
    "job-state-reasons",
)

PAPER_MEDIA = {
    "A4": "A4",
    "A3": "A3",
    "Letter": "Letter",
    "Legal": "Legal",
}


def hundredths_mm_to_points(units: int) -> int:
    return round(units / 100 / 25.4 * 72)


def _collect_attributes(node: Any, wanted: tuple, found: Dict[str, Any]) -> None:
    """Walk ipptool JSON output and keep the first value of each wanted attribute"""
    if isinstance(node, dict):
        for key, value in node.items():
            if key in wanted and key not in found:
                if isinstance(value, dict) and "value" in value:
                    value = value["value"]
                if isinstance(value, list):
                    value = value[0] if value else None
                found[key] = value
            else:
                _collect_attributes(value, wanted, found)
    elif isinstance(node, list):
        for item in node:
            _collect_attributes(item, wanted, found)


def parse_job_attributes(output: str) -> Dict[str, Any]:
    """Extract job status attributes from `ipptool -j` output"""
    try:
        document = json.loads(output)
    except json.JSONDecodeError as e:
        raise BackendQueryError(f"Malformed ipptool response: {e}") from e

    found: Dict[str, Any] = {}
    _collect_attributes(document, STATUS_ATTRIBUTES, found)
    if "job-state" not in found:
        raise BackendQueryError("ipptool response does not contain job-state")
    return found


def parse_page_log(content: str, printer: str, handle: str) -> int:
    """Total for one job from a CUPS page_log; 0 when the job is absent"""
    total: Optional[int] = None
    page_lines = 0
    for line in content.splitlines():
        match = PAGE_LOG_PATTERN.match(line.strip())
        if not match:
            continue
        if match.group("printer").lower() != printer.lower() or match.group("job") != handle:
            continue
        if match.group("page").lower() == "total":
            total = int(match.group("count"))
        else:
            page_lines += 1
    return total if total is not None else page_lines


class CupsBackend(PrintBackend):
    """CUPS/IPP printer subsystem"""

    name = "cups"

    def _server_args(self) -> List[str]:
        return ["-h", f"{self.config.cups_server}:{self.config.cups_port}"]

    def build_submission(self, document_path: Path, options: PrintOptions) -> List[str]:
        cmd = ["lp", *self._server_args()]
        if self.config.cups_user:
            cmd.extend(["-U", self.config.cups_user])
        cmd.extend(["-d", options.printer, "-n", str(options.copies), "-t", options.title])

        print_settings = [f"media={PAPER_MEDIA.get(options.paper_size, options.paper_size)}"]

        if options.color_mode == ColorMode.COLOR:
            print_settings.append("print-color-mode=color")
        else:
            print_settings.append("print-color-mode=monochrome")

        if options.booklet:
            print_settings.append("sides=two-sided-short-edge")
        elif options.sides == Sides.DOUBLE:
            print_settings.append("sides=two-sided-long-edge")
        else:
            print_settings.append("sides=one-sided")

        if options.orientation == Orientation.SIDEWAYS:
            print_settings.append("orientation-requested=4")
        else:
            print_settings.append("orientation-requested=3")

        margin = hundredths_mm_to_points(options.margin_units)
        for side in ("left", "right", "top", "bottom"):
            print_settings.append(f"page-{side}={margin}")

        if options.is_spreadsheet:
            print_settings.append("fit-to-page")

        if options.page_range:
            print_settings.append(f"page-ranges={options.page_range}")

        if options.booklet:
            print_settings.append("number-up=2")
            print_settings.append("number-up-layout=lrtb")

        for setting in print_settings:
            cmd.extend(["-o", setting])

        cmd.append(str(document_path))
        return cmd

    async def submit(self, document_path: Path, options: PrintOptions) -> str:
        cmd = self.build_submission(document_path, options)
        self.logger.info(f"Executing lp command: {' '.join(cmd)}")

        try:
            result = await self.runner.run(cmd, timeout=self.config.command_timeout)
        except ProcessError as e:
            raise SubmissionError(f"lp failed: {e}") from e

        match = REQUEST_ID_PATTERN.search(result.stdout)
        if not match:
            raise SubmissionError(f"Unable to parse CUPS job id from lp output: {result.stdout.strip()!r}")

        handle = match.group("job")
        self.logger.info(f"Print job {handle} sent to printer {options.printer}")
        return handle

    async def is_device_ready(self, printer: str) -> bool:
        try:
            state = await self.runner.run(
                ["lpstat", *self._server_args(), "-p", printer],
                timeout=self.config.command_timeout,
            )
            accepting = await self.runner.run(
                ["lpstat", *self._server_args(), "-a", printer],
                timeout=self.config.command_timeout,
            )
        except ProcessError as e:
            self.logger.error(f"Printer status check failed for {printer}: {e}")
            return False

        state_text = state.stdout.lower()
        accepting_text = accepting.stdout.lower()

        available = ("is idle" in state_text or "now printing" in state_text) and "disabled" not in state_text
        is_accepting = "accepting requests" in accepting_text and "not accepting" not in accepting_text

        self.logger.info(f"Printer {printer} available: {available}, accepting jobs: {is_accepting}")
        return available and is_accepting

    async def query_status(self, printer: str, handle: str) -> BackendStatus:
        cmd = [
            "ipptool", "-j",
            "-T", str(int(self.config.command_timeout)),
            "-d", f"job-id={handle}",
            f"{self.config.cups_uri}/printers/{printer}",
            "get-job-attributes.test",
        ]
        try:
            result = await self.runner.run(cmd, timeout=self.config.command_timeout)
        except ProcessError as e:
            raise BackendQueryError(f"ipptool failed for job {handle}: {e}") from e

        attributes = parse_job_attributes(result.stdout)
        self.logger.debug(f"Job status {attributes}")

        pages = parse_count(attributes.get("job-pages-completed"))
        if pages is None:
            pages = parse_count(attributes.get("pages-completed"))

        message = attributes.get("job-printer-state-message") or attributes.get("job-state-message")
        return BackendStatus(
            native_state=normalize_cups_state(attributes.get("job-state")),
            pages_completed=pages,
            sheets_completed=parse_count(attributes.get("job-media-sheets-completed")),
            impressions_completed=parse_count(attributes.get("job-impressions-completed")),
            message=str(message) if message else None,
            raw=attributes,
        )

    async def query_page_history(self, printer: str, handle: str) -> int:
        page_log = self.config.cups_page_log
        try:
            async with aiofiles.open(page_log, 'r', encoding='utf-8', errors='replace') as f:
                content = await f.read()
        except OSError as e:
            raise BackendQueryError(f"Unable to read CUPS page log {page_log}: {e}") from e

        total = parse_page_log(content, printer, handle)
        self.logger.info(f"Page log total for job {printer}-{handle}: {total}")
        return total

    async def cancel(self, printer: str, handle: str) -> None:
        try:
            await self.runner.run(
                ["cancel", *self._server_args(), f"{printer}-{handle}"],
                timeout=self.config.command_timeout,
            )
        except ProcessError as e:
            raise BackendQueryError(f"cancel failed for job {printer}-{handle}: {e}") from e

    async def list_devices(self) -> List[str]:
        try:
            result = await self.runner.run(
                ["lpstat", *self._server_args(), "-e"],
                timeout=self.config.command_timeout,
            )
        except ProcessError as e:
            raise BackendQueryError(f"Failed to enumerate CUPS destinations: {e}") from e
        return [line.split()[0].lower() for line in result.stdout.splitlines() if line.strip()]

    def map_state(self, native_state: str) -> JobStatus:
        return map_cups_state(native_state)
