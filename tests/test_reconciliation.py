"""
Tests for status reconciliation.

Tests cover:
- CUPS and spooler native state mapping
- Pages-per-sheet factor
- Pages printed fallback chain
"""

import json
import logging
from dataclasses import replace
from pathlib import Path

import pytest

from conftest import FakeRunner, PRINTER
from printdale.backends import BackendStatus, CupsBackend, SpoolerBackend
from printdale.errors import BackendQueryError
from printdale.models import JobStatus, PageLayout, Sides
from printdale.reconciliation import (
    decode_spooler_flags,
    describe_terminal_error,
    map_cups_state,
    map_spooler_state,
    pages_per_sheet,
    reconcile_pages_printed,
)


class TestCupsStateMapping:
    """Tests for IPP job-state mapping."""

    @pytest.mark.parametrize("native,expected", [
        ("pending", JobStatus.PENDING),
        ("pending-held", JobStatus.HELD),
        ("processing", JobStatus.PROCESSING),
        ("processing-stopped", JobStatus.HELD),
        ("canceled", JobStatus.CANCELED),
        ("aborted", JobStatus.ABORTED),
        ("completed", JobStatus.COMPLETED),
    ])
    def test_keywords(self, native, expected):
        assert map_cups_state(native) == expected

    @pytest.mark.parametrize("native,expected", [
        (3, JobStatus.PENDING),
        (4, JobStatus.HELD),
        (5, JobStatus.PROCESSING),
        (6, JobStatus.HELD),
        (7, JobStatus.CANCELED),
        (8, JobStatus.ABORTED),
        (9, JobStatus.COMPLETED),
        ("9", JobStatus.COMPLETED),
    ])
    def test_enum_values(self, native, expected):
        assert map_cups_state(native) == expected

    def test_case_insensitive(self):
        assert map_cups_state("Processing") == JobStatus.PROCESSING

    @pytest.mark.parametrize("native", ["", "mystery", None, 42])
    def test_unknown_maps_to_pending(self, native):
        assert map_cups_state(native) == JobStatus.PENDING


class TestSpoolerStateMapping:
    """Tests for Windows spooler JobStatus mapping."""

    @pytest.mark.parametrize("native,expected", [
        ("Printing", JobStatus.PROCESSING),
        ("Spooling", JobStatus.PROCESSING),
        ("Restarted", JobStatus.PROCESSING),
        ("Printed", JobStatus.COMPLETED),
        ("Complete", JobStatus.COMPLETED),
        ("Error", JobStatus.ABORTED),
        ("Offline", JobStatus.ABORTED),
        ("PaperOut", JobStatus.ABORTED),
        ("Blocked_DevQ", JobStatus.ABORTED),
        ("User Intervention", JobStatus.ABORTED),
        ("Paused", JobStatus.HELD),
        ("Deleting", JobStatus.CANCELED),
        ("Deleted", JobStatus.CANCELED),
        ("Normal", JobStatus.PENDING),
        ("Retained", JobStatus.PENDING),
        ("", JobStatus.PENDING),
        ("Something New", JobStatus.PENDING),
    ])
    def test_tokens(self, native, expected):
        assert map_spooler_state(native) == expected

    def test_precedence_for_combined_flags(self):
        """Canceled beats Aborted beats Completed beats Held beats Processing."""
        assert map_spooler_state("Printing, Deleting") == JobStatus.CANCELED
        assert map_spooler_state("Error, Printing") == JobStatus.ABORTED
        assert map_spooler_state("Printing, Printed") == JobStatus.COMPLETED
        assert map_spooler_state("Paused, Spooling") == JobStatus.HELD

    def test_numeric_flags(self):
        assert map_spooler_state(0x0080) == JobStatus.COMPLETED
        assert map_spooler_state(0x0010 | 0x0004) == JobStatus.CANCELED
        assert map_spooler_state(0) == JobStatus.PENDING

    def test_decode_flags(self):
        assert decode_spooler_flags(0) == "normal"
        assert decode_spooler_flags(0x0010 | 0x0004) == "deleting, printing"
        assert decode_spooler_flags("Printing") == "Printing"
        assert decode_spooler_flags(None) == ""


class TestPagesPerSheet:
    """Tests for the sheet to page multiplier."""

    def test_single_sided(self, make_job):
        assert pages_per_sheet(make_job(sides=Sides.SINGLE)) == 1

    def test_double_sided(self, make_job):
        assert pages_per_sheet(make_job(sides=Sides.DOUBLE)) == 2

    def test_booklet_ignores_duplex(self, make_job):
        assert pages_per_sheet(make_job(sides=Sides.DOUBLE, page_layout=PageLayout.BOOKLET)) == 1


class TestPagesPrintedFallback:
    """Tests for the pages printed fallback chain."""

    async def test_primary_counter_times_copies(self, make_job, fake_backend):
        job = make_job(copies=2)
        count = await reconcile_pages_printed(job, BackendStatus("completed", pages_completed=5), fake_backend, "7")
        assert count.pages == 10
        assert count.source == "pages-completed"

    async def test_primary_counter_for_booklet(self, make_job, fake_backend):
        """Booklet counters report impressions; four make one folded sheet."""
        job = make_job(copies=3, page_layout=PageLayout.BOOKLET)
        count = await reconcile_pages_printed(job, BackendStatus("completed", pages_completed=9), fake_backend, "7")
        assert count.pages == 9

    async def test_impressions_when_pages_missing(self, make_job, fake_backend):
        job = make_job()
        status = BackendStatus("completed", pages_completed=0, sheets_completed=1, impressions_completed=2)

        count = await reconcile_pages_printed(job, status, fake_backend, "7")

        assert count.pages == 2
        assert count.source == "impressions-completed"

    async def test_sheets_completed_fallback(self, make_job, fake_backend):
        """Zero primary, 3 sheets, double-sided, 2 copies gives 12 pages."""
        job = make_job(copies=2, sides=Sides.DOUBLE)
        status = BackendStatus("completed", pages_completed=0, sheets_completed=3)

        count = await reconcile_pages_printed(job, status, fake_backend, "7")

        assert count.pages == 12
        assert count.source == "sheets-completed"

    async def test_history_fallback(self, make_job, fake_backend):
        fake_backend.history = 7
        job = make_job(copies=1)

        count = await reconcile_pages_printed(job, BackendStatus("completed"), fake_backend, "7")

        assert count.pages == 7
        assert count.source == "history"

    async def test_no_counters_defaults_to_zero(self, make_job, fake_backend, caplog):
        job = make_job()

        with caplog.at_level(logging.WARNING, logger="printdale.reconciliation"):
            count = await reconcile_pages_printed(job, BackendStatus("completed"), fake_backend, "7")

        assert count.pages == 0
        assert count.source == "none"
        assert "No reliable page count" in caplog.text

    async def test_history_error_counts_as_zero(self, make_job, fake_backend):
        fake_backend.history = BackendQueryError("page log unreadable")
        count = await reconcile_pages_printed(make_job(), BackendStatus("completed"), fake_backend, "7")
        assert count.pages == 0


class TestTerminalError:
    """Tests for the error message stored with failed jobs."""

    def test_uses_backend_message(self):
        status = BackendStatus("aborted", message="Paper jam in tray 2")
        assert describe_terminal_error(JobStatus.ABORTED, status) == "Paper jam in tray 2"

    def test_falls_back_to_native_state(self):
        assert describe_terminal_error(JobStatus.CANCELED, BackendStatus("canceled")) == "Job status: canceled"

    def test_none_for_other_states(self):
        assert describe_terminal_error(JobStatus.COMPLETED, BackendStatus("completed", message="ok")) is None


# A completion reply as logged by ipptool -j on a Ricoh queue; it carries
# impressions and sheets but no pages-completed attribute.
IMPRESSIONS_ONLY_REPLY = json.dumps({
    "version": "2.0",
    "statusCode": "successful-ok",
    "id": 54661002,
    "operation-attributes-tag": {"attributes-charset": "utf-8", "attributes-natural-language": "en-us"},
    "job-attributes-tag": {
        "job-id": 37,
        "job-state": "completed",
        "job-impressions-completed": 2,
        "job-media-sheets-completed": 1,
    },
})


class TestPagesPrintedFromBackendReplies:
    """Tests for the fallback chain fed by real backend query output."""

    @pytest.fixture
    def runner(self):
        return FakeRunner()

    @pytest.fixture
    def cups(self, service_config, runner):
        return CupsBackend(service_config, runner)

    @pytest.fixture
    def spooler(self, service_config, runner):
        return SpoolerBackend(replace(service_config, backend="spooler"), runner)

    async def test_cups_impressions_only_reply(self, cups, runner, make_job):
        runner.queue(IMPRESSIONS_ONLY_REPLY)
        job = make_job(pages=2, job_handle="37")

        status = await cups.query_status(PRINTER, "37")
        count = await reconcile_pages_printed(job, status, cups, "37")

        assert cups.map_state(status.native_state) == JobStatus.COMPLETED
        assert count.pages == 2
        assert count.source == "impressions-completed"

    async def test_cups_impressions_for_booklet(self, cups, runner, make_job):
        runner.queue(IMPRESSIONS_ONLY_REPLY)
        job = make_job(page_layout=PageLayout.BOOKLET, copies=2)

        status = await cups.query_status(PRINTER, "37")
        count = await reconcile_pages_printed(job, status, cups, "37")

        assert count.pages == 2

    async def test_cups_pages_completed_reply(self, cups, runner, make_job):
        runner.queue(json.dumps({"job-attributes-tag": {
            "job-id": 38,
            "job-state": 9,
            "job-pages-completed": 4,
            "job-impressions-completed": 4,
            "job-media-sheets-completed": 2,
        }}))
        job = make_job(copies=2)

        status = await cups.query_status(PRINTER, "38")
        count = await reconcile_pages_printed(job, status, cups, "38")

        assert count.pages == 8
        assert count.source == "pages-completed"

    async def test_cups_sheets_only_reply(self, cups, runner, make_job):
        runner.queue(json.dumps({"job-attributes-tag": {
            "job-id": 39,
            "job-state": "completed",
            "job-media-sheets-completed": 3,
        }}))
        job = make_job(copies=2, sides=Sides.DOUBLE)

        status = await cups.query_status(PRINTER, "39")
        count = await reconcile_pages_printed(job, status, cups, "39")

        assert count.pages == 12
        assert count.source == "sheets-completed"

    async def test_cups_page_log_history(self, cups, runner, make_job, service_config):
        Path(service_config.cups_page_log).write_text(
            f"{PRINTER} admin 40 [18/Oct/2026:10:00:00 +0000] total 5 - localhost report.pdf A4 one-sided\n",
            encoding="utf-8",
        )
        runner.queue(json.dumps({"job-attributes-tag": {"job-id": 40, "job-state": "completed"}}))
        job = make_job()

        status = await cups.query_status(PRINTER, "40")
        count = await reconcile_pages_printed(job, status, cups, "40")

        assert count.pages == 5
        assert count.source == "history"

    async def test_spooler_pages_printed_reply(self, spooler, runner, make_job):
        runner.queue('{"JobStatus": "Printed", "PagesPrinted": 3, "TotalPages": 3}')
        job = make_job(copies=2)

        status = await spooler.query_status(PRINTER, "17")
        count = await reconcile_pages_printed(job, status, spooler, "17")

        assert spooler.map_state(status.native_state) == JobStatus.COMPLETED
        assert count.pages == 6
        assert count.source == "pages-completed"

    async def test_spooler_total_pages_history(self, spooler, runner, make_job):
        runner.queue('{"JobStatus": 128, "PagesPrinted": 0, "TotalPages": 4}', "4\r\n")
        job = make_job()

        status = await spooler.query_status(PRINTER, "17")
        count = await reconcile_pages_printed(job, status, spooler, "17")

        assert count.pages == 4
        assert count.source == "history"
        assert "TotalPages" in runner.calls[1][-1]
