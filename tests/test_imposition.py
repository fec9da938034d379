"""
Tests for booklet imposition.

Tests cover:
- Blank padding and page ordering
- Sheet-range slicing and its validation
- PDF reordering, padding page size and 2-up composition
"""

import pytest
from io import BytesIO
from pypdf import PdfReader

from printdale.errors import ConversionError, ValidationError
from printdale.imposition import (
    booklet_order,
    compose_two_up,
    count_pages,
    impose_booklet,
    padding_for,
    slice_sheets,
    total_sheets_for,
)


def _widths(document: bytes):
    return [round(float(page.mediabox.width)) for page in PdfReader(BytesIO(document)).pages]


class TestPadding:
    """Tests for blank page padding."""

    @pytest.mark.parametrize("pages,expected", [(1, 3), (2, 2), (3, 1), (4, 0), (5, 3), (8, 0), (13, 3)])
    def test_pads_to_multiple_of_four(self, pages, expected):
        """Padding brings the page count up to the next multiple of four."""
        assert padding_for(pages) == expected

    def test_total_sheets_rounds_up(self):
        assert total_sheets_for(4) == 2
        assert total_sheets_for(16) == 8


class TestBookletOrder:
    """Tests for saddle-stitch page ordering."""

    def test_four_pages(self):
        assert booklet_order(4) == [3, 0, 1, 2]

    def test_eight_pages(self):
        assert booklet_order(8) == [7, 0, 1, 6, 5, 2, 3, 4]

    def test_sixteen_pages(self):
        assert booklet_order(16) == [
            15, 0, 1, 14,
            13, 2, 3, 12,
            11, 4, 5, 10,
            9, 6, 7, 8,
        ]

    def test_order_is_permutation_for_any_page_count(self):
        """Every padded page appears exactly once."""
        for pages in range(1, 201):
            padded = pages + padding_for(pages)
            order = booklet_order(padded)
            assert sorted(order) == list(range(padded)), pages

    @pytest.mark.parametrize("padded", [0, 2, 6, 10])
    def test_rejects_unpadded_counts(self, padded):
        with pytest.raises(ValueError):
            booklet_order(padded)


class TestSheetRange:
    """Tests for restricting a booklet to a sheet range."""

    def test_no_bounds_returns_full_order(self):
        order = booklet_order(16)
        assert slice_sheets(order, 16) == order

    def test_middle_sheets(self):
        """Sheets 2 and 3 of a 16-page booklet carry order entries 4 through 11."""
        order = booklet_order(16)
        assert slice_sheets(order, 16, 2, 3) == [13, 2, 3, 12, 11, 4, 5, 10]

    def test_missing_to_defaults_to_last_sheet(self):
        order = booklet_order(16)
        assert slice_sheets(order, 16, sheets_from=4) == [9, 6, 7, 8]

    def test_missing_from_defaults_to_first_sheet(self):
        order = booklet_order(16)
        assert slice_sheets(order, 16, sheets_to=1) == [15, 0, 1, 14]

    def test_from_greater_than_to(self):
        with pytest.raises(ValidationError) as exc_info:
            slice_sheets(booklet_order(16), 16, 3, 2)
        assert "sheets_from" in exc_info.value.errors

    def test_to_exceeds_total_sheets(self):
        with pytest.raises(ValidationError) as exc_info:
            slice_sheets(booklet_order(16), 16, 1, 9)
        assert exc_info.value.errors["sheets_to"] == "sheetsTo (9) exceeds total sheets (8)"

    def test_zero_bound(self):
        with pytest.raises(ValidationError):
            slice_sheets(booklet_order(8), 8, 0, 1)

    def test_four_page_first_sheet_selects_everything(self):
        assert slice_sheets(booklet_order(4), 4, 1, 1) == [3, 0, 1, 2]

    def test_four_page_second_sheet_is_empty(self):
        """A 4-page booklet counts 2 sheets but only the first carries pages."""
        with pytest.raises(ValidationError) as exc_info:
            slice_sheets(booklet_order(4), 4, 2, 2)
        assert "contains no pages" in exc_info.value.errors["sheets_from"]


class TestImposeBooklet:
    """Tests for imposing real PDF documents."""

    def test_reorders_and_pads(self, make_pdf):
        """Pages are emitted in booklet order; blanks take the last page's size."""
        document = make_pdf(5, widths=[100, 101, 102, 103, 104])

        result = impose_booklet(document)

        assert result.original_pages == 5
        assert result.padding == 3
        assert result.padded_pages == 8
        assert result.total_sheets == 4
        assert result.order == [7, 0, 1, 6, 5, 2, 3, 4]
        assert _widths(result.document) == [104, 100, 101, 104, 104, 102, 103, 104]

    def test_sheet_range_limits_output(self, make_pdf):
        document = make_pdf(16, widths=[100 + i for i in range(16)])

        result = impose_booklet(document, sheets_from=2, sheets_to=3)

        assert result.order == [13, 2, 3, 12, 11, 4, 5, 10]
        assert count_pages(result.document) == 8
        assert _widths(result.document) == [113, 102, 103, 112, 111, 104, 105, 110]

    def test_invalid_range_raises(self, make_pdf):
        with pytest.raises(ValidationError):
            impose_booklet(make_pdf(4), sheets_from=2, sheets_to=2)

    def test_unreadable_document(self):
        with pytest.raises(ConversionError):
            impose_booklet(b"%PDF-1.4 definitely not a pdf")


class TestHelpers:
    """Tests for page counting and 2-up composition."""

    def test_count_pages(self, make_pdf):
        assert count_pages(make_pdf(7)) == 7

    def test_count_pages_rejects_garbage(self):
        with pytest.raises(ConversionError):
            count_pages(b"not a pdf at all")

    def test_compose_two_up(self, make_pdf):
        """Consecutive pages share one double-width sheet."""
        composed = compose_two_up(make_pdf(4, width=300, height=400))

        reader = PdfReader(BytesIO(composed))
        assert len(reader.pages) == 2
        assert round(float(reader.pages[0].mediabox.width)) == 600
        assert round(float(reader.pages[0].mediabox.height)) == 400

    def test_compose_two_up_odd_page_count(self, make_pdf):
        assert count_pages(compose_two_up(make_pdf(3))) == 2
