"""
Report Layout
=============
Builds a protection report as an in-memory list of pages made of positioned
elements, independent of the output format.

Pass 1 (``ReportLayoutEngine.build``) lays out four phases in order:
  1. Cover: issuer, report id, generation date, title, client and job details.
  2. Executive summary: evidence count, protection score, per-type bars.
  3. Evidence: one group per evidence type, one block per item.
  4. Legal declarations.

Pass 2 (``apply_footers``) stamps every page with "Page N of M", which needs
the final page count.

Coordinates are PDF points. ``y`` is measured downward from the top edge of
the page to the top of an element's bounding box.

Pagination rule: a block is measured before it is placed. If it does not fit
in the space left on the page, it starts a new page. An evidence item that
fits on a fresh page is never split; an item taller than a page is split only
between its text and its image.
"""

from __future__ import annotations

import dataclasses
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Sequence

from PIL import Image
from reportlab.lib.pagesizes import A4
from reportlab.pdfbase import pdfmetrics

from bluhatch.core.config import settings
from bluhatch.core.errors import BluhatchError
from bluhatch.models.evidence_item import EvidenceItem, EvidenceType
from bluhatch.models.job import Job
from bluhatch.services.protection import calculate_protection_score, protection_level

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 50.0
FOOTER_RESERVE = 40.0
CONTENT_TOP = MARGIN
CONTENT_BOTTOM = PAGE_HEIGHT - MARGIN - FOOTER_RESERVE
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN
CONTENT_HEIGHT = CONTENT_BOTTOM - CONTENT_TOP

IMAGE_DISPLAY_WIDTH = 300.0
IMAGE_PADDING = 8.0
BAR_MAX_WIDTH = 250.0
BAR_HEIGHT = 10.0
LINE_SPACING = 1.35

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
FONT_MONO = "Courier"

NAVY = (0.118, 0.227, 0.541)
GREY = (0.42, 0.45, 0.50)
LIGHT_GREY = (0.90, 0.91, 0.92)
BLACK = (0.0, 0.0, 0.0)
GREEN = (0.063, 0.725, 0.506)

RASTER_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "bmp", "webp")

TYPE_ORDER = (
    EvidenceType.before,
    EvidenceType.progress,
    EvidenceType.after,
    EvidenceType.approval,
    EvidenceType.defect,
    EvidenceType.contract,
    EvidenceType.receipt,
)

TYPE_LABELS = {
    EvidenceType.before: "Before Work",
    EvidenceType.progress: "Work in Progress",
    EvidenceType.after: "After Completion",
    EvidenceType.approval: "Client Approval",
    EvidenceType.defect: "Defect Documentation",
    EvidenceType.contract: "Contract Evidence",
    EvidenceType.receipt: "Receipt/Payment",
}

SECTION_TITLES = {
    EvidenceType.before: "Before Work Evidence",
    EvidenceType.progress: "Work in Progress Evidence",
    EvidenceType.after: "After Completion Evidence",
    EvidenceType.approval: "Client Approval Evidence",
    EvidenceType.defect: "Defect Documentation",
    EvidenceType.contract: "Contract Evidence",
    EvidenceType.receipt: "Receipt/Payment Evidence",
}

DEFAULT_ISSUER_NAME = "Professional Tradesperson"


def string_width(text: str, font: str = FONT, size: float = 10.0) -> float:
    return pdfmetrics.stringWidth(text, font, size)


def wrap_text(text: str, max_width: float, measure: Callable[[str], float]) -> list[str]:
    """Greedy word wrap.

    Words are appended to the current line while its measured width stays
    within *max_width*. A single word wider than *max_width* gets a line of
    its own rather than being broken.
    """
    lines: list[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if measure(candidate) <= max_width:
            current = candidate
            continue
        if current:
            lines.append(current)
        current = word
    if current:
        lines.append(current)
    return lines


def report_number(job_id, prefix: Optional[str] = None) -> str:
    prefix = prefix or settings.report_id_prefix
    return f"{prefix}-{str(job_id).split('-')[0].upper()}"


# ---------------------------------------------------------------------------
# Page model
# ---------------------------------------------------------------------------


class _Box:
    @property
    def bottom(self) -> float:
        return self.y + self.height

    def shifted(self, dy: float):
        return dataclasses.replace(self, y=self.y + dy)


@dataclass(frozen=True)
class TextElement(_Box):
    text: str
    x: float
    y: float
    width: float
    height: float
    font: str = FONT
    size: float = 10.0
    color: tuple = BLACK
    role: str = "body"
    block: Optional[str] = None


@dataclass(frozen=True)
class RuleElement(_Box):
    x: float
    y: float
    width: float
    height: float = 0.5
    color: tuple = LIGHT_GREY
    role: str = "body"
    block: Optional[str] = None


@dataclass(frozen=True)
class BarElement(_Box):
    x: float
    y: float
    width: float
    height: float
    color: tuple = NAVY
    label: str = ""
    block: Optional[str] = None


@dataclass(frozen=True)
class ImageElement(_Box):
    x: float
    y: float
    width: float
    height: float
    data: bytes = b""
    mime_type: str = "image/jpeg"
    block: Optional[str] = None


@dataclass
class Page:
    number: int
    elements: list = field(default_factory=list)


@dataclass
class ReportDocument:
    report_id: str
    title: str
    brand: str
    issuer: str
    generated_at: datetime
    pages: list[Page] = field(default_factory=list)
    section_headers: list[str] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def placements(self, block: str) -> list[tuple[int, object]]:
        """All (page number, element) pairs belonging to *block*."""
        return [
            (page.number, el)
            for page in self.pages
            for el in page.elements
            if getattr(el, "block", None) == block
        ]

    def texts(self, role: Optional[str] = None) -> list[str]:
        return [
            el.text
            for page in self.pages
            for el in page.elements
            if isinstance(el, TextElement) and (role is None or el.role == role)
        ]


@dataclass(frozen=True)
class ReportIssuer:
    company_name: str = DEFAULT_ISSUER_NAME
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None

    @classmethod
    def from_profile(cls, profile) -> "ReportIssuer":
        if profile is None:
            return cls()
        return cls(
            company_name=profile.company_name or DEFAULT_ISSUER_NAME,
            contact_email=profile.contact_email,
            contact_phone=profile.contact_phone,
        )


# ---------------------------------------------------------------------------
# Blocks: measured groups of elements positioned relative to their own top
# ---------------------------------------------------------------------------


@dataclass
class _Block:
    elements: list
    height: float

    def then(self, other: Optional["_Block"]) -> "_Block":
        if other is None:
            return self
        return _Block(
            self.elements + [el.shifted(self.height) for el in other.elements],
            self.height + other.height,
        )


class _BlockBuilder:
    def __init__(self, measure: Callable[[str, str, float], float], block: Optional[str] = None):
        self._measure = measure
        self._block = block
        self._elements: list = []
        self._y = 0.0

    def text(self, text, *, font=FONT, size=10.0, color=BLACK, role="body", indent=0.0):
        height = size * LINE_SPACING
        self._elements.append(
            TextElement(
                text=text,
                x=MARGIN + indent,
                y=self._y,
                width=self._measure(text, font, size),
                height=height,
                font=font,
                size=size,
                color=color,
                role=role,
                block=self._block,
            )
        )
        self._y += height
        return self

    def wrapped(self, text, *, font=FONT, size=10.0, color=BLACK, role="body", indent=0.0):
        lines = wrap_text(
            text,
            CONTENT_WIDTH - indent,
            lambda s: self._measure(s, font, size),
        )
        for line in lines:
            self.text(line, font=font, size=size, color=color, role=role, indent=indent)
        return self

    def rule(self, color=LIGHT_GREY, thickness=0.5):
        self._elements.append(
            RuleElement(x=MARGIN, y=self._y, width=CONTENT_WIDTH, height=thickness, color=color, block=self._block)
        )
        self._y += thickness
        return self

    def bar_row(self, label: str, width: float, *, label_width: float = 160.0):
        row_height = max(10.0 * LINE_SPACING, BAR_HEIGHT)
        self._elements.append(
            TextElement(
                text=label,
                x=MARGIN,
                y=self._y,
                width=self._measure(label, FONT, 10.0),
                height=row_height,
                block=self._block,
            )
        )
        if width > 0:
            self._elements.append(
                BarElement(
                    x=MARGIN + label_width,
                    y=self._y + (row_height - BAR_HEIGHT) / 2,
                    width=width,
                    height=BAR_HEIGHT,
                    label=label,
                    block=self._block,
                )
            )
        self._y += row_height + 4.0
        return self

    def image(self, data: bytes, mime_type: str, width: float, height: float):
        self._y += IMAGE_PADDING / 2
        self._elements.append(
            ImageElement(
                x=MARGIN,
                y=self._y,
                width=width,
                height=height,
                data=data,
                mime_type=mime_type,
                block=self._block,
            )
        )
        self._y += height + IMAGE_PADDING / 2
        return self

    def gap(self, height: float):
        self._y += height
        return self

    def build(self) -> _Block:
        return _Block(self._elements, self._y)


class _Composer:
    """Places blocks onto pages, opening a new page when a block does not fit."""

    def __init__(self, document: ReportDocument):
        self.document = document
        self.page: Optional[Page] = None
        self.y = CONTENT_TOP

    def new_page(self) -> None:
        self.page = Page(number=len(self.document.pages) + 1)
        self.document.pages.append(self.page)
        self.y = CONTENT_TOP

    @property
    def remaining(self) -> float:
        return CONTENT_BOTTOM - self.y

    @property
    def at_top(self) -> bool:
        return self.y == CONTENT_TOP

    def place(self, block: _Block, keep_with_next: float = 0.0) -> None:
        needed = min(block.height + keep_with_next, CONTENT_HEIGHT)
        if self.page is None or (needed > self.remaining and not self.at_top):
            self.new_page()
        if block.height > self.remaining:
            self._flow(block)
            return
        self.page.elements.extend(el.shifted(self.y) for el in block.elements)
        self.y += block.height

    def _flow(self, block: _Block) -> None:
        """Place a block taller than a page row by row, breaking between rows."""
        origin = self.y
        for el in sorted(block.elements, key=lambda e: e.y):
            top = origin + el.y
            if top + el.height > CONTENT_BOTTOM and top > CONTENT_TOP:
                self.new_page()
                origin = CONTENT_TOP - el.y
            self.page.elements.append(el.shifted(origin))
        self.y = origin + block.height


# ---------------------------------------------------------------------------
# Layout engine
# ---------------------------------------------------------------------------


def _fmt_datetime(value: Optional[datetime]) -> str:
    if value is None:
        return "Unknown"
    return value.strftime("%d/%m/%Y %H:%M:%S UTC")


def _fmt_money(value) -> str:
    if value is None:
        return "Not specified"
    return f"£{Decimal(value):,.2f}"


class ReportLayoutEngine:
    def __init__(
        self,
        brand_name: Optional[str] = None,
        report_id_prefix: Optional[str] = None,
        measure: Callable[[str, str, float], float] = string_width,
    ):
        self.brand = brand_name or settings.brand_name
        self.report_id_prefix = report_id_prefix or settings.report_id_prefix
        self.measure = measure

    @property
    def brand_title(self) -> str:
        return self.brand.title()

    def _builder(self, block: Optional[str] = None) -> _BlockBuilder:
        return _BlockBuilder(self.measure, block)

    def build(
        self,
        job: Job,
        evidence: Sequence[EvidenceItem],
        issuer: ReportIssuer,
        generated_at: datetime,
        fetch_image: Optional[Callable[[str], bytes]] = None,
        protection_score: Optional[int] = None,
    ) -> ReportDocument:
        score = (
            protection_score
            if protection_score is not None
            else calculate_protection_score(evidence)
        )
        document = ReportDocument(
            report_id=report_number(job.id, self.report_id_prefix),
            title=f"{self.brand_title} Trade Dispute Protection Report",
            brand=self.brand,
            issuer=issuer.company_name,
            generated_at=generated_at,
        )
        composer = _Composer(document)

        composer.new_page()
        self._cover(composer, job, evidence, issuer, generated_at)

        composer.new_page()
        self._summary(composer, evidence, score)

        if evidence:
            composer.new_page()
            self._evidence(composer, evidence, fetch_image)

        composer.new_page()
        self._legal(composer)

        logger.info(
            "Laid out report %s: %d evidence item(s) on %d page(s)",
            document.report_id,
            len(evidence),
            document.page_count,
        )
        return document

    # ── phase 1: cover ───────────────────────────────────────────────

    def _cover(self, composer, job, evidence, issuer, generated_at) -> None:
        b = self._builder()
        b.text(self.brand, font=FONT_BOLD, size=28, color=NAVY, role="title")
        b.text("Trade Dispute Protection Report", font=FONT_BOLD, size=18, role="title")
        b.text("Legally Admissible Evidence Documentation", size=11, color=GREY)
        b.gap(8).rule(color=NAVY, thickness=1.5).gap(16)
        composer.place(b.build())

        b = self._builder()
        b.text("REPORT INFORMATION", font=FONT_BOLD, size=13, color=NAVY, role="heading").gap(4)
        b.text(f"Report ID: {report_number(job.id, self.report_id_prefix)}")
        b.text(
            f"Report Generated: {generated_at.strftime('%d %B %Y')} at "
            f"{generated_at.strftime('%H:%M')} UTC"
        )
        b.wrapped(f"Generated By: {issuer.company_name}")
        if issuer.contact_email:
            b.wrapped(f"Contact Email: {issuer.contact_email}")
        if issuer.contact_phone:
            b.wrapped(f"Contact Phone: {issuer.contact_phone}")
        b.text(f"Evidence Items: {len(evidence)} items documented")
        b.gap(16)
        composer.place(b.build())

        b = self._builder()
        b.text("JOB DETAILS", font=FONT_BOLD, size=13, color=NAVY, role="heading").gap(4)
        b.wrapped(f"Client Name: {job.client_name}")
        if job.client_phone:
            b.wrapped(f"Client Phone: {job.client_phone}")
        b.wrapped(f"Client Address: {job.client_address}")
        b.wrapped(f"Job Type: {job.job_type_label}")
        b.text(f"Contract Value: {_fmt_money(job.contract_value)}")
        b.text(f"Start Date: {job.start_date.isoformat() if job.start_date else 'Not specified'}")
        b.text(
            "Completion Date: "
            f"{job.completion_date.isoformat() if job.completion_date else 'In progress'}"
        )
        if job.job_description:
            b.gap(4).wrapped(f"Description: {job.job_description}")
        composer.place(b.build())

    # ── phase 2: executive summary ───────────────────────────────────

    def _summary(self, composer, evidence, score: int) -> None:
        total = len(evidence)
        counts = {t: 0 for t in TYPE_ORDER}
        for item in evidence:
            counts[EvidenceType(item.evidence_type)] += 1

        b = self._builder()
        b.text("EXECUTIVE SUMMARY", font=FONT_BOLD, size=16, color=NAVY, role="heading")
        b.gap(4).rule(color=NAVY, thickness=1.0).gap(12)
        b.text(f"{score}% PROTECTION COVERAGE", font=FONT_BOLD, size=20, color=GREEN)
        b.text(protection_level(score), font=FONT_BOLD, size=12)
        b.wrapped(
            f"This job has {score}% legal protection coverage based on evidence "
            "quality and completeness."
        )
        b.gap(8).text(f"Total Evidence Items: {total}").gap(12)
        composer.place(b.build())

        b = self._builder()
        b.text("Evidence Breakdown", font=FONT_BOLD, size=12, role="heading").gap(4)
        if total == 0:
            b.text("No evidence has been captured for this job yet.", color=GREY)
        for evidence_type in TYPE_ORDER:
            count = counts[evidence_type]
            if count == 0:
                continue
            b.bar_row(
                f"{TYPE_LABELS[evidence_type]}: {count}",
                count / total * BAR_MAX_WIDTH,
            )
        b.gap(12)
        composer.place(b.build())

        hashed = sum(1 for i in evidence if i.file_hash)
        anchored = sum(1 for i in evidence if i.blockchain_timestamp)
        located = sum(1 for i in evidence if i.gps_latitude is not None and i.gps_longitude is not None)
        signed = sum(1 for i in evidence if i.client_signature)

        b = self._builder()
        b.text("Key Highlights", font=FONT_BOLD, size=12, role="heading").gap(4)
        for line in (
            f"SHA-256 fingerprint recorded for {hashed} of {total} items",
            f"{anchored} of {hashed} fingerprints hold an OpenTimestamps proof",
            f"{located} items carry GPS location data",
            f"{signed} items carry a client signature",
            "Server capture time recorded for every item",
        ):
            b.wrapped(f"- {line}", indent=8)
        composer.place(b.build())

    # ── phase 3: evidence ────────────────────────────────────────────

    def _evidence(self, composer, evidence, fetch_image) -> None:
        b = self._builder()
        b.text("EVIDENCE DOCUMENTATION", font=FONT_BOLD, size=16, color=NAVY, role="heading")
        b.gap(4).rule(color=NAVY, thickness=1.0).gap(12)
        composer.place(b.build())

        seq = 0
        for evidence_type in TYPE_ORDER:
            items = [i for i in evidence if EvidenceType(i.evidence_type) == evidence_type]
            if not items:
                continue

            header = f"{SECTION_TITLES[evidence_type]} ({len(items)} items)"
            heading = (
                self._builder()
                .text(header, font=FONT_BOLD, size=13, color=NAVY, role="section")
                .gap(6)
                .build()
            )

            blocks = []
            for item in items:
                seq += 1
                blocks.append(self._item_blocks(item, seq, fetch_image))

            first_text, first_image = blocks[0]
            first_height = first_text.height + (first_image.height if first_image else 0)
            composer.place(heading, keep_with_next=min(first_height, CONTENT_HEIGHT - heading.height))
            document_headers = composer.document.section_headers
            document_headers.append(header)

            for text_block, image_block in blocks:
                whole = text_block.then(image_block)
                if whole.height <= CONTENT_HEIGHT:
                    composer.place(whole)
                else:
                    composer.place(text_block)
                    composer.place(image_block)

    def _item_blocks(self, item: EvidenceItem, seq: int, fetch_image):
        block_id = str(item.id)
        evidence_type = EvidenceType(item.evidence_type)

        b = self._builder(block_id)
        b.text(f"#{seq} {TYPE_LABELS[evidence_type].upper()}", font=FONT_BOLD, size=11, color=NAVY)
        b.text(f"Captured: {_fmt_datetime(item.server_timestamp or item.created_at)}", size=9, color=GREY)
        if item.device_timestamp is not None:
            b.text(f"Device time: {_fmt_datetime(item.device_timestamp)}", size=9, color=GREY)
        b.gap(2).wrapped(f"Description: {item.description}")
        if item.gps_latitude is not None and item.gps_longitude is not None:
            accuracy = f"{item.gps_accuracy:g}" if item.gps_accuracy is not None else "unknown"
            b.text(
                f"Location: {item.gps_latitude:.6f}, {item.gps_longitude:.6f} "
                f"(±{accuracy}m accuracy)"
            )
        if item.client_approval is not None:
            b.text(f"Client Approval: {'Approved' if item.client_approval else 'Not approved'}")
        if item.client_signature:
            b.text("Client Signature: captured at time of approval")
        if item.file_hash:
            b.text(f"File Hash (SHA-256): {item.file_hash[:32]}...", font=FONT_MONO, size=8)
            if item.blockchain_timestamp:
                b.text("Blockchain Timestamp: proof recorded (OpenTimestamps)", size=9, color=GREEN)
            else:
                b.text("Blockchain timestamping in progress...", size=9, color=GREY)
        else:
            b.text("File: none (text-only evidence)", size=9, color=GREY)
        text_block = b.build()

        spacer = self._builder(block_id).gap(6).rule().gap(10).build()

        image_block = None
        picture = self._load_image(item, fetch_image)
        if picture is not None:
            data, mime_type, px_width, px_height = picture
            width = min(IMAGE_DISPLAY_WIDTH, CONTENT_WIDTH)
            height = width * px_height / px_width
            # Image plus its spacer must fit on an empty page
            max_height = CONTENT_HEIGHT - IMAGE_PADDING - spacer.height
            if height > max_height:
                width = width * max_height / height
                height = max_height
            image_block = self._builder(block_id).image(data, mime_type, width, height).build()

        if image_block is None:
            return text_block.then(spacer), None
        return text_block, image_block.then(spacer)

    def _load_image(self, item: EvidenceItem, fetch_image):
        if not item.file_path or fetch_image is None:
            return None
        extension = item.file_path.rsplit(".", 1)[-1].lower() if "." in item.file_path else ""
        if extension not in RASTER_EXTENSIONS:
            return None
        try:
            data = fetch_image(item.file_path)
        except BluhatchError as exc:
            logger.warning("Skipping image for evidence %s: %s", item.id, exc.message)
            return None
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                px_width, px_height = img.size
                mime_type = Image.MIME.get(img.format or "", "image/jpeg")
        except (OSError, Image.DecompressionBombError) as exc:
            logger.warning("Skipping undecodable image for evidence %s: %s", item.id, exc)
            return None
        if px_width <= 0 or px_height <= 0:
            return None
        return data, mime_type, px_width, px_height

    # ── phase 4: legal declarations ──────────────────────────────────

    def _legal_sections(self) -> list[tuple[str, str]]:
        brand = self.brand_title
        return [
            (
                "Evidence Authenticity",
                "Evidence must be captured truthfully and completely. "
                f"{brand} does not alter or verify the factual accuracy of descriptions "
                "or photos. Users are solely responsible for entering correct context.",
            ),
            (
                "Verification Method",
                "File integrity can be independently verified using the SHA-256 hashes "
                "and OpenTimestamps proofs provided. Visit opentimestamps.org for "
                "verification tools.",
            ),
            (
                "Admissibility",
                f"This report was automatically generated using the {brand} platform. "
                f"All descriptions and evidence are user-supplied. {brand} does not "
                "provide legal advice and cannot guarantee admissibility in every court "
                "or tribunal.",
            ),
            (
                "Signature Responsibility",
                "Digital signatures represent the client's acknowledgement as entered at "
                "the time of capture. Users are responsible for ensuring authenticity of "
                "consent.",
            ),
        ]

    def _legal(self, composer) -> None:
        b = self._builder()
        b.text("LEGAL DECLARATIONS", font=FONT_BOLD, size=16, color=NAVY, role="heading")
        b.gap(4).rule(color=NAVY, thickness=1.0).gap(12)
        composer.place(b.build())

        for title, body in self._legal_sections():
            b = self._builder()
            b.text(title, font=FONT_BOLD, size=11, role="heading").gap(2)
            b.wrapped(body).gap(10)
            composer.place(b.build())


# ---------------------------------------------------------------------------
# Pass 2: footers
# ---------------------------------------------------------------------------


def apply_footers(
    document: ReportDocument,
    measure: Callable[[str, str, float], float] = string_width,
) -> ReportDocument:
    """Stamp brand, report id, date and "Page N of M" on every page."""
    total = document.page_count
    rule_y = PAGE_HEIGHT - MARGIN - 20.0
    text_y = rule_y + 6.0
    size = 8.0
    left = (
        f"{document.brand.title()} Trade Protection Report | {document.report_id} | "
        f"{document.generated_at.strftime('%d/%m/%Y')}"
    )

    for page in document.pages:
        page.elements = [el for el in page.elements if getattr(el, "role", None) != "footer"]
        right = f"Page {page.number} of {total}"
        right_width = measure(right, FONT, size)
        page.elements.extend(
            [
                RuleElement(x=MARGIN, y=rule_y, width=CONTENT_WIDTH, role="footer"),
                TextElement(
                    text=left,
                    x=MARGIN,
                    y=text_y,
                    width=measure(left, FONT, size),
                    height=size * LINE_SPACING,
                    size=size,
                    color=GREY,
                    role="footer",
                ),
                TextElement(
                    text=right,
                    x=PAGE_WIDTH - MARGIN - right_width,
                    y=text_y,
                    width=right_width,
                    height=size * LINE_SPACING,
                    size=size,
                    color=GREY,
                    role="footer",
                ),
            ]
        )
    return document
