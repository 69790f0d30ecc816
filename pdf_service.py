# pdf_service.py
import io
import logging
import math
import os
import re
from dataclasses import dataclass
from datetime import datetime

from reportlab.pdfgen import canvas
from reportlab.lib.pagesizes import A4, LEGAL, LETTER, landscape
from reportlab.pdfbase.pdfmetrics import stringWidth

from config import Config
from formatting import address_lines, format_currency, format_invoice_date, format_phone, format_quantity
from invoice_math import InvoiceDocument, TimeItem, item_amount, item_quantity, item_rate
from models import Invoice
from render_config import TABLE_COLUMNS, DateFormat, InvalidConfig, RenderConfig, load_render_config

logger = logging.getLogger(__name__)

LINE_HEIGHT = 1.2  # x font size
PAD = 6.0
NOTES_SPACER = "__SPACER__"
NOTES_SPACER_GAP = 3.0

_PAGE_SIZES = {"letter": LETTER, "a4": A4, "legal": LEGAL}

COLUMN_TITLES = {
    "type": "Type",
    "description": "Description",
    "quantity": "Qty/Hrs",
    "rate": "Rate/Price",
    "amount": "Amount",
}
# share of the content width; description takes what is left
COLUMN_SHARES = {"type": 0.12, "quantity": 0.12, "rate": 0.17, "amount": 0.17}
NUMERIC_COLUMNS = {"quantity", "rate", "amount"}

WHITE = (255, 255, 255)


class InvalidInvoice(ValueError):
    """Invoice is missing data the document cannot be drawn without."""


# -----------------------------
# Layout trace
# -----------------------------
# Coordinates are points from the top-left corner of the page; y of a
# TextRun is its baseline. Rotation is counter-clockwise degrees.
@dataclass(frozen=True)
class TextRun:
    section: str
    x: float
    y: float
    text: str
    font: str
    size: float
    color: tuple
    align: str = "left"
    rotation: float = 0.0


@dataclass(frozen=True)
class FillRect:
    section: str
    x: float
    y: float
    width: float
    height: float
    color: tuple
    stroke_color: tuple | None = None
    stroke_width: float = 0.0


@dataclass(frozen=True)
class Line:
    section: str
    x1: float
    y1: float
    x2: float
    y2: float
    color: tuple
    width: float = 1.0


@dataclass(frozen=True)
class RenderedPage:
    number: int
    ops: tuple


@dataclass(frozen=True)
class RenderedDocument:
    pdf_bytes: bytes
    pages: tuple
    page_width: float
    page_height: float
    dpi: int = 72
    bleed: float = 0.0

    @property
    def total_pages(self) -> int:
        return len(self.pages)

    def ops_for(self, section: str, page: int | None = None) -> list:
        pages = self.pages if page is None else [self.pages[page - 1]]
        return [op for p in pages for op in p.ops if op.section == section]

    def text_content(self) -> str:
        return "\n".join(op.text for p in self.pages for op in p.ops if isinstance(op, TextRun))


# -----------------------------
# Helpers
# -----------------------------
def _safe_filename(name: str) -> str:
    # strip characters not allowed on Windows/mac paths
    return re.sub(r'[\\/*?:"<>|]', "", (name or "")).strip() or "Invoice"


def pdf_filename(invoice_number: str, customer_name: str = "") -> str:
    parts = ["Invoice", invoice_number or "", (customer_name or "").strip()]
    return _safe_filename("_".join(p for p in parts if p)) + ".pdf"


def _font_name(font) -> str:
    style = (font.style or "normal").lower()
    if style == "bolditalic":
        return "Helvetica-BoldOblique"
    if style == "bold":
        return "Helvetica-Bold"
    if style == "italic":
        return "Helvetica-Oblique"
    return "Helvetica"


def _bold(font) -> str:
    return "Helvetica-BoldOblique" if "italic" in (font.style or "") else "Helvetica-Bold"


def _wrap_text(text, font, size, max_width):
    words = str(text).split()
    lines = []
    current = ""

    def split_long_token(token: str):
        """Break a single long token (like an email) into width-safe chunks."""
        if stringWidth(token, font, size) <= max_width:
            return [token]
        chunks = []
        remaining = token
        while remaining:
            lo, hi = 1, len(remaining)
            fit = 1
            while lo <= hi:
                mid = (lo + hi) // 2
                if stringWidth(remaining[:mid], font, size) <= max_width:
                    fit = mid
                    lo = mid + 1
                else:
                    hi = mid - 1
            chunks.append(remaining[:fit])
            remaining = remaining[fit:]
        return chunks

    expanded_words = []
    for w in words:
        expanded_words.extend(split_long_token(w))

    for w in expanded_words:
        test = current + (" " if current else "") + w
        if stringWidth(test, font, size) <= max_width:
            current = test
        else:
            if current:
                lines.append(current)
            current = w
    if current:
        lines.append(current)
    return lines


def _measure(text, font, size, max_width) -> float:
    if not text or not str(text).strip():
        return 0.0
    return len(_wrap_text(text, font, size, max_width)) * size * LINE_HEIGHT


def _split_notes_into_lines(notes_text: str, max_width, font, size):
    """Wrap each stored line, keeping a small spacer between original lines."""
    raw = (notes_text or "").strip()
    if not raw:
        return []

    out = []
    for ln in raw.splitlines():
        ln = ln.strip()
        if not ln:
            continue
        out.extend(_wrap_text(ln, font, size, max_width))
        out.append(NOTES_SPACER)
    while out and out[-1] == NOTES_SPACER:
        out.pop()
    return out


def _blend_toward_white(color, opacity: float) -> tuple:
    o = min(1.0, max(0.0, float(opacity)))
    return tuple(int(round(c * o + 255 * (1 - o))) for c in color)


def _page_size(config: RenderConfig) -> tuple:
    size = _PAGE_SIZES.get(config.layout.page_size, LETTER)
    if config.layout.orientation == "landscape":
        return landscape(size)
    return size


def _page_number_align(position: str) -> str:
    pos = (position or "").strip().lower()
    if pos.startswith("bottom-"):
        pos = pos[len("bottom-"):]
    if pos in ("left", "center", "right"):
        return pos
    logger.warning("Unsupported page number position %r, using center", position)
    return "center"


def _watermark_rotation(value) -> float:
    try:
        angle = float(value)
    except (TypeError, ValueError):
        angle = float("nan")
    if not math.isfinite(angle):
        logger.warning("Unsupported watermark rotation %r, drawing unrotated", value)
        return 0.0
    return angle


def _check_inputs(document, config) -> None:
    if document is None:
        raise InvalidInvoice("Invoice data is required")
    if document.company is None:
        raise InvalidInvoice("Company data is required")
    if document.customer is None:
        raise InvalidInvoice("Customer data is required")
    if document.items is None or not isinstance(document.items, (list, tuple)):
        raise InvalidInvoice("Invoice items are required")
    if document.totals is None:
        raise InvalidInvoice("Invoice totals are required")
    if config is None:
        raise InvalidConfig("Render config is required")
    config.validate_for_render()


# -----------------------------
# Layout pass
# -----------------------------
class _InvoiceLayout:
    """Single pass over the sections with one running cursor."""

    def __init__(self, document: InvoiceDocument, config: RenderConfig):
        self.doc = document
        self.cfg = config
        self.page_w, self.page_h = _page_size(config)
        self.margin = config.layout.margin
        self.content_w = self.page_w - 2 * self.margin
        if self.content_w <= 0 or self.page_h - 2 * self.margin <= 0:
            raise InvalidConfig("config.layout.margin leaves no room on the page")

        colors = config.colors
        self.primary = colors.primary
        self.dark = colors.dark_gray
        self.light = colors.light_gray
        self.border = colors.border_gray

        t = config.typography
        self.body_font, self.body_size = _font_name(t.body), t.body.size
        self.label_font, self.label_size = _font_name(t.table_header), t.table_header.size
        self.detail_font, self.detail_size = _font_name(t.detail), t.detail.size

        self.footer_h = self._footer_height()
        self.bottom_limit = self.page_h - self.margin - self.footer_h

        wm = config.watermark
        self.watermark = wm if (wm is not None and wm.enabled) else None
        if self.watermark is not None:
            self.wm_rotation = _watermark_rotation(wm.rotation)
            self.wm_color = _blend_toward_white(wm.color, wm.opacity)

        self.pages: list[list] = []
        self.ops: list = []
        self.cursor = self.margin
        self.in_table = False
        self.columns = self._table_columns() if config.sections.items_table else []

    # -- primitives --
    def text(self, section, x, y, text, font, size, color, align="left", rotation=0.0):
        self.ops.append(TextRun(section, x, y, str(text), font, size, tuple(color), align, rotation))

    def rect(self, section, x, y, w, h, color, stroke_color=None, stroke_width=0.0):
        self.ops.append(FillRect(section, x, y, w, h, tuple(color), stroke_color, stroke_width))

    def line(self, section, x1, y1, x2, y2, color, width=1.0):
        self.ops.append(Line(section, x1, y1, x2, y2, tuple(color), width))

    def start_page(self):
        self.ops = []
        self.pages.append(self.ops)
        self.cursor = self.margin
        if self.watermark is not None:
            wm = self.watermark
            self.text(
                "watermark",
                self.page_w / 2,
                self.page_h / 2 + wm.font_size * 0.35,
                wm.text,
                "Helvetica-Bold",
                wm.font_size,
                self.wm_color,
                align="center",
                rotation=self.wm_rotation,
            )
        if self.in_table:
            self._table_header()

    def ensure(self, height: float):
        """Break to a new page when `height` does not fit under the cursor."""
        at_top = self.cursor <= self.margin + (self._table_header_height() if self.in_table else 0.0)
        if self.cursor + height > self.bottom_limit and not at_top:
            self.start_page()

    # -- sections --
    def run(self) -> list[list]:
        self.start_page()
        self._header()
        self._parties()
        if self.cfg.sections.items_table:
            self._items_table()
        if self.cfg.sections.totals:
            self._totals()
        if self.cfg.sections.notes:
            self._notes()
        return self.pages

    def _header(self):
        cfg = self.cfg
        t = cfg.typography
        company = self.doc.company
        top = self.cursor

        show_logo = cfg.sections.logo and cfg.logo is not None and cfg.logo.enabled
        logo_w = cfg.logo.size if show_logo else 0.0

        info_lines = []
        if cfg.sections.company_info:
            info_lines.extend(address_lines(company.address))
            if company.email:
                info_lines.append(company.email)
            if company.phone:
                info_lines.append(format_phone(company.phone))
        name_h = t.company_name.size * LINE_HEIGHT if cfg.sections.company_info else 0.0
        left_h = name_h + len(info_lines) * self.body_size * LINE_HEIGHT
        right_h = (t.invoice_title.size + t.invoice_number.size) * LINE_HEIGHT
        band_h = max(cfg.layout.header_height, logo_w + 2 * PAD, left_h + 2 * PAD, right_h + 2 * PAD)

        self.rect("header", self.margin, top, self.content_w, band_h, self.light)

        left_x = self.margin + PAD
        if show_logo:
            logo = cfg.logo
            ly = top + (band_h - logo_w) / 2
            self.rect("header", left_x, ly, logo_w, logo_w, logo.background_color or self.primary)
            size = max(1.0, logo_w * 0.3)
            self.text("header", left_x + logo_w / 2, ly + logo_w / 2 + size * 0.35, logo.text,
                      "Helvetica-Bold", size, logo.text_color, align="center")
            left_x += logo_w + 2 * PAD

        if cfg.sections.company_info:
            y = top + PAD + t.company_name.size
            self.text("header", left_x, y, company.name or "Company Name",
                      _font_name(t.company_name), t.company_name.size, self.primary)
            y += name_h - t.company_name.size + self.body_size
            for ln in info_lines:
                self.text("header", left_x, y, ln, self.body_font, self.body_size, self.dark)
                y += self.body_size * LINE_HEIGHT

        right_x = self.margin + self.content_w - PAD
        y = top + PAD + t.invoice_title.size
        self.text("header", right_x, y, "INVOICE", _font_name(t.invoice_title), t.invoice_title.size,
                  self.primary, align="right")
        y += t.invoice_number.size * LINE_HEIGHT + (t.invoice_title.size * LINE_HEIGHT - t.invoice_title.size)
        self.text("header", right_x, y, f"#{self.doc.number}", _font_name(t.invoice_number),
                  t.invoice_number.size, self.dark, align="right")

        self.cursor = top + band_h + cfg.layout.section_spacing

    def _bill_to_lines(self, width):
        customer = self.doc.customer
        lines = []
        if customer.name:
            lines.extend(_wrap_text(customer.name, self.body_font, self.body_size, width))
        for ln in address_lines(customer.address):
            lines.extend(_wrap_text(ln, self.body_font, self.body_size, width))
        if customer.email:
            lines.extend(_wrap_text(customer.email, self.body_font, self.body_size, width))
        if customer.phone:
            lines.append(format_phone(customer.phone))
        return lines

    def _date_lines(self):
        fmt = self.cfg.date_format
        lines = []
        when = format_invoice_date(self.doc.date, fmt.format, fmt.locale)
        if when:
            lines.append(f"Invoice Date: {when}")
        due = format_invoice_date(self.doc.due_date, fmt.format, fmt.locale)
        if due:
            lines.append(f"Due Date: {due}")
        return lines

    def _parties(self):
        sections = self.cfg.sections
        if not (sections.bill_to or sections.invoice_dates):
            return
        half_w = self.content_w / 2 - 8
        lh = self.body_size * LINE_HEIGHT
        label_lh = self.label_size * LINE_HEIGHT

        bill_lines = self._bill_to_lines(half_w - 2 * PAD) if sections.bill_to else []
        bill_h = 2 * PAD + label_lh + len(bill_lines) * lh if sections.bill_to else 0.0
        date_lines = self._date_lines() if sections.invoice_dates else []
        dates_h = 2 * PAD + len(date_lines) * lh if date_lines else 0.0
        row_h = max(bill_h, dates_h)
        if row_h <= 0:
            return

        self.ensure(row_h)
        top = self.cursor
        if sections.bill_to:
            self.rect("bill_to", self.margin, top, half_w, bill_h, self.light)
            self.text("bill_to", self.margin + PAD, top + PAD + self.label_size, "BILL TO:",
                      self.label_font, self.label_size, self.dark)
            y = top + PAD + label_lh + self.body_size
            for ln in bill_lines:
                self.text("bill_to", self.margin + PAD, y, ln, self.body_font, self.body_size, self.dark)
                y += lh
        if date_lines:
            x = self.margin + self.content_w - PAD
            y = top + PAD + self.body_size
            for ln in date_lines:
                self.text("dates", x, y, ln, self.body_font, self.body_size, self.dark, align="right")
                y += lh

        self.cursor = top + row_h + self.cfg.layout.section_spacing

    # -- items table --
    def _table_columns(self):
        visible = [c for c in TABLE_COLUMNS if c in self.cfg.table.columns]
        fixed = {c: COLUMN_SHARES[c] * self.content_w for c in visible if c != "description"}
        if "description" in visible:
            widths = dict(fixed, description=max(0.0, self.content_w - sum(fixed.values())))
        else:
            total = sum(fixed.values()) or 1.0
            widths = {c: w * self.content_w / total for c, w in fixed.items()}
        out = []
        x = self.margin
        for c in visible:
            out.append((c, x, widths[c]))
            x += widths[c]
        return out

    def _table_header_height(self) -> float:
        return self.label_size * LINE_HEIGHT + 2 * PAD

    def _cell_x(self, col, x, w):
        return (x + w - PAD, "right") if col in NUMERIC_COLUMNS else (x + PAD, "left")

    def _table_header(self):
        table = self.cfg.table
        h = self._table_header_height()
        top = self.cursor
        self.rect("table_header", self.margin, top, self.content_w, h, table.header_background or self.primary)
        baseline = top + PAD + self.label_size
        for col, x, w in self.columns:
            tx, align = self._cell_x(col, x, w)
            self.text("table_header", tx, baseline, COLUMN_TITLES[col], self.label_font, self.label_size,
                      table.header_text_color, align=align)
        self.cursor = top + h

    def _description_width(self):
        for col, x, w in self.columns:
            if col == "description":
                return max(1.0, w - 2 * PAD)
        return None

    def _item_date_line(self, item):
        if not isinstance(item, TimeItem) or not item.date:
            return ""
        fmt = self.cfg.date_format or DateFormat()
        when = format_invoice_date(item.date, fmt.format, fmt.locale)
        return f"Date: {when}" if when else ""

    def row_height(self, item) -> float:
        base = self.cfg.table.base_row_height
        width = self._description_width()
        if width is None:
            return base
        measured = _measure(item.description, self.body_font, self.body_size, width)
        measured += _measure(item.long_description, self.detail_font, self.detail_size, width)
        measured += _measure(self._item_date_line(item), self.detail_font, self.detail_size, width)
        return max(base, measured)

    def _items_table(self):
        table = self.cfg.table
        items = list(self.doc.items)
        amounts = self.doc.totals.item_amounts
        if len(amounts) != len(items):
            amounts = [item_amount(it) for it in items]
        currency = self.cfg.currency
        border = table.border_color or self.border

        first_h = self.row_height(items[0]) if items else 0.0
        self.ensure(self._table_header_height() + first_h)
        self._table_header()
        self.in_table = True

        for idx, item in enumerate(items):
            h = self.row_height(item)
            self.ensure(h)
            top = self.cursor
            # parity runs over the whole item list, not per page
            if table.show_alternating_rows and idx % 2 == 1:
                self.rect("table_row", self.margin, top, self.content_w, h, self.light)

            mid_baseline = top + (h - self.body_size * LINE_HEIGHT) / 2 + self.body_size
            values = {
                "type": item.kind,
                "quantity": format_quantity(item_quantity(item)),
                "rate": format_currency(item_rate(item), currency),
                "amount": format_currency(amounts[idx], currency),
            }
            for col, x, w in self.columns:
                if col == "description":
                    self._description_cell(item, x + PAD, w - 2 * PAD, top, h)
                    continue
                tx, align = self._cell_x(col, x, w)
                font = _bold(self.cfg.typography.body) if col == "amount" else self.body_font
                self.text("table_row", tx, mid_baseline, values[col], font, self.body_size, self.dark, align=align)

            if table.border_width > 0:
                self.line("table_row", self.margin, top + h, self.margin + self.content_w, top + h,
                          border, table.border_width)
            self.cursor = top + h + table.row_spacing

        self.in_table = False
        self.cursor += self.cfg.layout.section_spacing

    def _description_cell(self, item, x, width, top, row_h):
        blocks = [(item.description, self.body_font, self.body_size, self.dark)]
        if item.long_description:
            blocks.append((item.long_description, self.detail_font, self.detail_size, self.dark))
        date_line = self._item_date_line(item)
        if date_line:
            blocks.append((date_line, self.detail_font, self.detail_size, self.dark))

        content_h = sum(_measure(text, font, size, width) for text, font, size, _ in blocks)
        y = top + (row_h - content_h) / 2
        for text, font, size, color in blocks:
            if not text or not str(text).strip():
                continue
            for ln in _wrap_text(text, font, size, width):
                self.text("table_row", x, y + size, ln, font, size, color)
                y += size * LINE_HEIGHT

    # -- totals --
    def _totals(self):
        totals = self.doc.totals
        currency = self.cfg.currency
        t = self.cfg.typography
        lh = self.body_size * LINE_HEIGHT + 4
        total_lh = t.total.size * LINE_HEIGHT

        rows = [("Subtotal:", totals.subtotal), ("Tax:", totals.tax)]
        if totals.fee:
            rows.append(("Card Fee:", totals.fee))

        box_w = min(240.0, self.content_w)
        box_h = 2 * PAD + len(rows) * lh + 8 + total_lh
        self.ensure(box_h)
        top = self.cursor
        x0 = self.margin + self.content_w - box_w
        x1 = self.margin + self.content_w - PAD
        self.rect("totals", x0, top, box_w, box_h, self.light, stroke_color=self.border, stroke_width=0.5)

        y = top + PAD + self.body_size
        for label, value in rows:
            self.text("totals", x0 + PAD, y, label, self.body_font, self.body_size, self.dark)
            self.text("totals", x1, y, format_currency(value, currency), self.body_font, self.body_size,
                      self.dark, align="right")
            y += lh
        rule_y = y - self.body_size + 2
        self.line("totals", x0 + PAD, rule_y, x1, rule_y, self.border, 0.5)
        y = rule_y + 6 + t.total.size
        self.text("totals", x0 + PAD, y, "Total:", _font_name(t.total), t.total.size, self.primary)
        self.text("totals", x1, y, format_currency(totals.total, currency), _font_name(t.total), t.total.size,
                  self.primary, align="right")

        self.cursor = top + box_h + self.cfg.layout.section_spacing

    # -- notes --
    def _notes(self):
        width = self.content_w - 2 * PAD
        remaining = _split_notes_into_lines(self.doc.notes, width, self.body_font, self.body_size)
        if not remaining:
            return
        lh = self.body_size * LINE_HEIGHT
        label_lh = self.label_size * LINE_HEIGHT
        fixed = 2 * PAD + label_lh
        title = "Notes:"

        def line_h(ln):
            return NOTES_SPACER_GAP if ln == NOTES_SPACER else lh

        while remaining:
            avail = self.bottom_limit - self.cursor - fixed
            fit, used = 0, 0.0
            for ln in remaining:
                if used + line_h(ln) > avail:
                    break
                used += line_h(ln)
                fit += 1
            if fit == 0:
                if self.cursor > self.margin:
                    self.start_page()
                    continue
                fit, used = 1, line_h(remaining[0])

            chunk, remaining = remaining[:fit], remaining[fit:]
            top = self.cursor
            box_h = fixed + used
            self.rect("notes", self.margin, top, self.content_w, box_h, self.light,
                      stroke_color=self.border, stroke_width=0.5)
            self.text("notes", self.margin + PAD, top + PAD + self.label_size, title,
                      self.label_font, self.label_size, self.dark)
            y = top + PAD + label_lh
            for ln in chunk:
                if ln == NOTES_SPACER:
                    y += NOTES_SPACER_GAP
                    continue
                self.text("notes", self.margin + PAD, y + self.body_size, ln, self.body_font, self.body_size,
                          self.dark)
                y += lh
            self.cursor = top + box_h
            if remaining:
                self.start_page()
                title = "Notes (cont.):"

        self.cursor += self.cfg.layout.section_spacing

    # -- per-page furniture --
    def _footer_lines(self):
        if not self.cfg.sections.footer:
            return []
        footer = self.cfg.footer
        lines = []
        if footer.show_thank_you and footer.thank_you_text:
            lines.append((footer.thank_you_text, self.body_font, self.body_size))
        if footer.text:
            lines.append((footer.text, self.detail_font, self.detail_size))
        return lines

    def _footer_height(self) -> float:
        if not self.cfg.sections.footer:
            return 0.0
        return PAD + sum(size * LINE_HEIGHT for _, _, size in self._footer_lines()) + PAD

    def draw_footer(self, ops: list):
        if not self.cfg.sections.footer:
            return
        top = self.page_h - self.margin - self.footer_h + PAD / 2
        ops.append(Line("footer", self.margin, top, self.margin + self.content_w, top, self.border, 0.3))
        y = top + PAD / 2
        for text, font, size in self._footer_lines():
            y += size * LINE_HEIGHT
            ops.append(TextRun("footer", self.page_w / 2, y, text, font, size, self.dark, "center"))

    def draw_page_number(self, ops: list, number: int, total: int):
        ps = self.cfg.print_settings
        align = _page_number_align(ps.page_number_position)
        x = {"left": self.margin, "center": self.page_w / 2, "right": self.page_w - self.margin}[align]
        y = self.page_h - self.margin / 2 + self.body_size * 0.35
        ops.append(TextRun("page_number", x, y, f"Page {number} of {total}", self.body_font, self.body_size,
                           self.dark, align))


# -----------------------------
# Serialization
# -----------------------------
def _rgb(color):
    return color[0] / 255.0, color[1] / 255.0, color[2] / 255.0


def _draw_text(pdf, op: TextRun, y: float):
    pdf.setFont(op.font, op.size)
    pdf.setFillColorRGB(*_rgb(op.color))
    if op.align == "right":
        pdf.drawRightString(op.x, y, op.text)
    elif op.align == "center":
        pdf.drawCentredString(op.x, y, op.text)
    else:
        pdf.drawString(op.x, y, op.text)


def _paint(pdf, op, page_h: float):
    if isinstance(op, TextRun):
        y = page_h - op.y
        if op.rotation:
            pdf.saveState()
            try:
                pdf.translate(op.x, y)
                pdf.rotate(op.rotation)
                _draw_text(pdf, TextRun(op.section, 0, 0, op.text, op.font, op.size, op.color, op.align), 0)
            except (ValueError, TypeError, ZeroDivisionError) as e:
                logger.warning("Rotated text failed (%s), drawing unrotated", e)
                pdf.restoreState()
                pdf.saveState()
                _draw_text(pdf, op, y)
            finally:
                pdf.restoreState()
        else:
            _draw_text(pdf, op, y)
    elif isinstance(op, FillRect):
        pdf.setFillColorRGB(*_rgb(op.color))
        stroke = 0
        if op.stroke_color is not None and op.stroke_width > 0:
            pdf.setStrokeColorRGB(*_rgb(op.stroke_color))
            pdf.setLineWidth(op.stroke_width)
            stroke = 1
        pdf.rect(op.x, page_h - op.y - op.height, op.width, op.height, stroke=stroke, fill=1)
    elif isinstance(op, Line):
        pdf.setStrokeColorRGB(*_rgb(op.color))
        pdf.setLineWidth(op.width)
        pdf.line(op.x1, page_h - op.y1, op.x2, page_h - op.y2)
    else:
        raise TypeError(f"Unknown draw op: {type(op).__name__}")


def _pdf_bytes(document: InvoiceDocument, config: RenderConfig, pages, page_w, page_h) -> bytes:
    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=(page_w, page_h), invariant=1)

    meta = config.print_settings.pdf_metadata if config.print_settings is not None else None
    pdf.setTitle((meta.title if meta and meta.title else None) or f"Invoice - {document.number}")
    if meta is not None:
        if meta.author:
            pdf.setAuthor(meta.author)
        if meta.subject:
            pdf.setSubject(meta.subject)
        if meta.keywords:
            pdf.setKeywords(", ".join(meta.keywords))

    for page in pages:
        for op in page.ops:
            _paint(pdf, op, page_h)
        pdf.showPage()
    pdf.save()
    return buf.getvalue()


def render(document: InvoiceDocument, config: RenderConfig) -> RenderedDocument:
    """
    Lay out an invoice into pages and serialize it to PDF.

    Raises InvalidInvoice / InvalidConfig before anything is drawn; the PDF
    bytes are only returned once every page has been written.
    """
    _check_inputs(document, config)

    layout = _InvoiceLayout(document, config)
    raw_pages = layout.run()

    total = len(raw_pages)
    ps = config.print_settings
    pages = []
    for number, ops in enumerate(raw_pages, start=1):
        ops = list(ops)
        layout.draw_footer(ops)
        if ps is not None and ps.include_page_numbers:
            layout.draw_page_number(ops, number, total)
        pages.append(RenderedPage(number=number, ops=tuple(ops)))
    pages = tuple(pages)

    pdf_bytes = _pdf_bytes(document, config, pages, layout.page_w, layout.page_h)
    logger.info("Rendered invoice %s: %d page(s)", document.number, total)
    return RenderedDocument(
        pdf_bytes=pdf_bytes,
        pages=pages,
        page_width=layout.page_w,
        page_height=layout.page_h,
        dpi=ps.dpi if ps is not None else 72,
        bleed=ps.bleed if ps is not None else 0.0,
    )


def render_to_file(document: InvoiceDocument, config: RenderConfig, pdf_path: str) -> RenderedDocument:
    rendered = render(document, config)
    os.makedirs(os.path.dirname(os.path.abspath(pdf_path)), exist_ok=True)
    with open(pdf_path, "wb") as fh:
        fh.write(rendered.pdf_bytes)
    return rendered


def generate_and_store_pdf(session, invoice_id: int, config: RenderConfig | None = None, exports_dir: str | None = None) -> str:
    """
    Generates (or regenerates) a PDF for the given invoice_id.
    Totals are recomputed first; the file lands in EXPORTS_DIR/<year>/ and
    invoice.pdf_path + invoice.pdf_generated_at are updated.

    Returns: absolute pdf path on disk.
    """
    inv = session.get(Invoice, invoice_id)
    if not inv:
        raise ValueError(f"Invoice not found: id={invoice_id}")

    if config is None:
        config = load_render_config(Config.PRINT_CONFIG_PATH)

    inv.recompute_totals()
    document = inv.to_document()

    generated_dt = datetime.utcnow()
    year = (inv.date or generated_dt).strftime("%Y")
    out_dir = os.path.join(exports_dir or Config.EXPORTS_DIR, year)
    customer_name = inv.customer.name if inv.customer else ""
    fname = pdf_filename(inv.invoice_number, customer_name)
    pdf_path = os.path.abspath(os.path.join(out_dir, fname))

    render_to_file(document, config, pdf_path)

    inv.pdf_path = pdf_path
    inv.pdf_generated_at = generated_dt
    session.add(inv)
    session.commit()

    logger.info("Stored PDF for invoice %s", inv.invoice_number)
    return pdf_path
