"""
Imposition Engine
Saddle-stitch booklet page ordering, blank padding and sheet-range slicing
"""

import logging
import math
from dataclasses import dataclass
from io import BytesIO
from typing import List, Optional, Sequence

from pypdf import PageObject, PdfReader, PdfWriter, Transformation
from pypdf.errors import PyPdfError

from .errors import ConversionError, ValidationError

logger = logging.getLogger(__name__)

PAGES_PER_SIGNATURE = 4


@dataclass(frozen=True)
class ImpositionResult:
    """Imposed document together with the plan used to build it"""

    document: bytes
    order: List[int]
    original_pages: int
    padded_pages: int
    padding: int
    total_sheets: int


def padding_for(page_count: int) -> int:
    """Blank pages needed to reach the next multiple of four"""
    return (PAGES_PER_SIGNATURE - page_count % PAGES_PER_SIGNATURE) % PAGES_PER_SIGNATURE


def total_sheets_for(padded_count: int) -> int:
    return math.ceil(padded_count / 2)


def booklet_order(padded_count: int) -> List[int]:
    """Zero-based page order for a padded document of padded_count pages

    Each group of four entries is one folded sheet: outer back, outer front,
    inner front, inner back.
    """
    if padded_count < PAGES_PER_SIGNATURE or padded_count % PAGES_PER_SIGNATURE:
        raise ValueError(f"padded page count must be a positive multiple of 4, got {padded_count}")

    order: List[int] = []
    for i in range(0, padded_count // 2, 2):
        order.extend([
            padded_count - 1 - i,
            i,
            i + 1,
            padded_count - 2 - i,
        ])
    return order


def slice_sheets(
    order: Sequence[int],
    padded_count: int,
    sheets_from: Optional[int] = None,
    sheets_to: Optional[int] = None,
) -> List[int]:
    """Restrict a booklet order to an inclusive, one-based sheet range"""
    if sheets_from is None and sheets_to is None:
        return list(order)

    total_sheets = total_sheets_for(padded_count)
    first = sheets_from if sheets_from is not None else 1
    last = sheets_to if sheets_to is not None else total_sheets

    if first < 1 or last < 1:
        raise ValidationError(
            "sheetsFrom and sheetsTo must be at least 1",
            {"sheets_from" if first < 1 else "sheets_to": "must be at least 1"},
        )
    if first > last:
        raise ValidationError.for_field("sheets_from", "must be less than or equal to sheets_to")
    if last > total_sheets:
        raise ValidationError.for_field(
            "sheets_to", f"sheetsTo ({last}) exceeds total sheets ({total_sheets})"
        )

    start = (first - 1) * PAGES_PER_SIGNATURE
    end = min(last * PAGES_PER_SIGNATURE, padded_count)
    selected = list(order[start:end])
    if not selected:
        raise ValidationError.for_field(
            "sheets_from", f"selected sheet range {first}-{last} contains no pages"
        )
    return selected


def _read(document: bytes) -> PdfReader:
    try:
        return PdfReader(BytesIO(document))
    except (PyPdfError, ValueError, KeyError, IndexError) as e:
        raise ConversionError(f"Unreadable PDF document: {e}") from e


def _write(writer: PdfWriter) -> bytes:
    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def count_pages(document: bytes) -> int:
    """Number of pages in a PDF document"""
    reader = _read(document)
    try:
        return len(reader.pages)
    except (PyPdfError, ValueError, KeyError, IndexError) as e:
        raise ConversionError(f"Unable to count pages: {e}") from e


def impose_booklet(
    document: bytes,
    sheets_from: Optional[int] = None,
    sheets_to: Optional[int] = None,
) -> ImpositionResult:
    """Reorder a PDF for saddle-stitch booklet printing"""
    reader = _read(document)
    pages: List[PageObject] = list(reader.pages)
    original = len(pages)
    if original < 1:
        raise ValidationError.for_field("file", "document has no pages")

    padding = padding_for(original)
    if padding:
        last = pages[-1]
        width, height = float(last.mediabox.width), float(last.mediabox.height)
        logger.info(f"Padding PDF with {padding} blank pages for booklet printing")
        pages.extend(PageObject.create_blank_page(width=width, height=height) for _ in range(padding))

    padded = len(pages)
    order = booklet_order(padded)
    logger.info(f"Reordered pages for booklet: {', '.join(str(i) for i in order)}")

    selected = slice_sheets(order, padded, sheets_from, sheets_to)
    if selected != order:
        logger.info(
            f"Filtered pages for sheets {sheets_from or 1} to {sheets_to or total_sheets_for(padded)}: "
            f"{', '.join(str(i) for i in selected)}"
        )

    writer = PdfWriter()
    for index in selected:
        writer.add_page(pages[index])

    return ImpositionResult(
        document=_write(writer),
        order=selected,
        original_pages=original,
        padded_pages=padded,
        padding=padding,
        total_sheets=total_sheets_for(padded),
    )


def compose_two_up(document: bytes) -> bytes:
    """Place consecutive page pairs side by side on double-width sheets"""
    reader = _read(document)
    pages = list(reader.pages)
    if not pages:
        raise ValidationError.for_field("file", "document has no pages")

    width = max(float(page.mediabox.width) for page in pages)
    height = max(float(page.mediabox.height) for page in pages)

    writer = PdfWriter()
    for start in range(0, len(pages), 2):
        sheet = PageObject.create_blank_page(width=width * 2, height=height)
        for slot, page in enumerate(pages[start:start + 2]):
            sheet.merge_transformed_page(page, Transformation().translate(tx=width * slot, ty=0))
        writer.add_page(sheet)

    logger.debug(f"Composed {len(pages)} pages onto {len(writer.pages)} two-up sheets")
    return _write(writer)
