# render_config.py
"""
Invoice layout/style configuration.

The settings screen stores this as a JSON document (camelCase keys). Here it
is parsed into nested frozen dataclasses; changes go through
RenderConfig.updated(), which returns a new value.
"""
from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field, fields, is_dataclass, replace
from pathlib import Path
from typing import Mapping

logger = logging.getLogger(__name__)

TABLE_COLUMNS = ("type", "description", "quantity", "rate", "amount")
PAGE_SIZES = ("letter", "a4", "legal")
FONT_STYLES = ("normal", "bold", "italic", "bolditalic")


class InvalidConfig(ValueError):
    """A config part needed for rendering is missing or malformed."""


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.title() for p in rest)


def _json_key(f) -> str:
    return f.metadata.get("key") or _camel(f.name)


def _lookup(data: Mapping, f):
    for key in (_json_key(f), f.name):
        if key in data:
            return True, data[key]
    return False, None


# -----------------------------
# Field converters
# -----------------------------
def _to_number(value, path: str, *, minimum: float | None = 0.0, maximum: float | None = None) -> float:
    if isinstance(value, bool):
        raise InvalidConfig(f"{path}: expected a number, got {value!r}")
    try:
        num = float(value)
    except (TypeError, ValueError):
        raise InvalidConfig(f"{path}: expected a number, got {value!r}") from None
    if not math.isfinite(num):
        raise InvalidConfig(f"{path}: expected a finite number")
    if minimum is not None and num < minimum:
        raise InvalidConfig(f"{path}: must be >= {minimum:g}")
    if maximum is not None and num > maximum:
        raise InvalidConfig(f"{path}: must be <= {maximum:g}")
    return num


def _to_color(value, path: str) -> tuple[int, int, int]:
    if isinstance(value, str):
        raw = value.strip()
        if not re.fullmatch(r"#[0-9a-fA-F]{6}", raw):
            raise InvalidConfig(f"{path}: expected #rrggbb or [r, g, b], got {value!r}")
        return (int(raw[1:3], 16), int(raw[3:5], 16), int(raw[5:7], 16))
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        raise InvalidConfig(f"{path}: expected [r, g, b], got {value!r}")
    rgb = []
    for i, c in enumerate(value):
        if isinstance(c, bool) or not isinstance(c, (int, float)) or not 0 <= c <= 255:
            raise InvalidConfig(f"{path}[{i}]: expected 0-255, got {c!r}")
        rgb.append(int(round(c)))
    return tuple(rgb)


def _convert(f, value, path: str):
    kind = f.metadata.get("kind", "str")
    if value is None and f.metadata.get("optional"):
        return None
    if kind == "sub":
        sub_cls = f.metadata["type"]
        if is_dataclass(value) and isinstance(value, sub_cls):
            return value
        return _parse(sub_cls, value, path)
    if kind == "color":
        return _to_color(value, path)
    if kind == "number":
        return _to_number(value, path, minimum=f.metadata.get("min", 0.0), maximum=f.metadata.get("max"))
    if kind == "int":
        num = _to_number(value, path, minimum=f.metadata.get("min", 0.0), maximum=f.metadata.get("max"))
        if num != int(num):
            raise InvalidConfig(f"{path}: expected a whole number, got {value!r}")
        return int(num)
    if kind == "angle":
        # Bad angles are handled (and reported) when the watermark is drawn.
        try:
            return float(value)
        except (TypeError, ValueError):
            return float("nan")
    if kind == "bool":
        if not isinstance(value, bool):
            raise InvalidConfig(f"{path}: expected true/false, got {value!r}")
        return value
    if kind == "choice":
        raw = str(value or "").strip().lower().replace(" ", "")
        if raw not in f.metadata["choices"]:
            raise InvalidConfig(f"{path}: expected one of {', '.join(f.metadata['choices'])}, got {value!r}")
        return raw
    if kind == "columns":
        if not isinstance(value, (list, tuple)):
            raise InvalidConfig(f"{path}: expected a list of column names")
        cols = tuple(str(c).strip().lower() for c in value)
        unknown = [c for c in cols if c not in TABLE_COLUMNS]
        if unknown:
            raise InvalidConfig(f"{path}: unknown column(s) {', '.join(unknown)}")
        return cols
    if kind == "strings":
        if isinstance(value, str):
            return tuple(s.strip() for s in value.split(",") if s.strip())
        if not isinstance(value, (list, tuple)):
            raise InvalidConfig(f"{path}: expected a list of strings")
        return tuple(str(s) for s in value)
    if value is None:
        raise InvalidConfig(f"{path}: expected text")
    return str(value)


def _warn_unknown_keys(cls, data: Mapping, path: str) -> None:
    known = {k for f in fields(cls) for k in (_json_key(f), f.name)}
    unknown = sorted(str(k) for k in data if k not in known)
    if unknown:
        logger.warning("Ignoring unknown config key(s) %s at %s", ", ".join(unknown), path)


def _parse(cls, data, path: str):
    if not isinstance(data, Mapping):
        raise InvalidConfig(f"{path}: expected an object, got {type(data).__name__}")
    _warn_unknown_keys(cls, data, path)
    values = {}
    for f in fields(cls):
        found, raw = _lookup(data, f)
        if found:
            values[f.name] = _convert(f, raw, f"{path}.{_json_key(f)}")
    return cls(**values)


def _dump(obj) -> dict:
    out = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if value is None:
            continue
        if is_dataclass(value):
            value = _dump(value)
        elif isinstance(value, tuple):
            value = list(value)
        out[_json_key(f)] = value
    return out


def _sub(cls, **kw):
    return field(default_factory=cls, metadata={"kind": "sub", "type": cls, **kw})


def _num(default, **kw):
    return field(default=default, metadata={"kind": "number", **kw})


def _color(default, **kw):
    return field(default=default, metadata={"kind": "color", **kw})


# -----------------------------
# Config parts
# -----------------------------
@dataclass(frozen=True)
class Colors:
    primary: tuple = _color((41, 99, 235))
    dark_gray: tuple = _color((31, 41, 55))
    light_gray: tuple = _color((243, 244, 246))
    border_gray: tuple = _color((229, 231, 235))


@dataclass(frozen=True)
class Layout:
    """Lengths are PDF points (1/72 inch)."""
    page_size: str = field(default="letter", metadata={"kind": "choice", "choices": PAGE_SIZES})
    orientation: str = field(default="portrait", metadata={"kind": "choice", "choices": ("portrait", "landscape")})
    margin: float = _num(54.0)
    header_height: float = _num(90.0)
    section_spacing: float = _num(18.0)


@dataclass(frozen=True)
class FontSpec:
    size: float = _num(10.0, min=1.0)
    style: str = field(default="normal", metadata={"kind": "choice", "choices": FONT_STYLES})


def _font(size, style="normal"):
    return field(
        default_factory=lambda: FontSpec(size, style),
        metadata={"kind": "sub", "type": FontSpec},
    )


@dataclass(frozen=True)
class Typography:
    company_name: FontSpec = _font(16, "bold")
    invoice_title: FontSpec = _font(18, "bold")
    invoice_number: FontSpec = _font(10)
    body: FontSpec = _font(9)
    table_header: FontSpec = _font(8, "bold")
    total: FontSpec = _font(12, "bold")
    detail: FontSpec = _font(7, "italic")


@dataclass(frozen=True)
class LogoConfig:
    enabled: bool = field(default=True, metadata={"kind": "bool"})
    text: str = "jfB"
    size: float = _num(34.0, min=1.0)
    background_color: tuple | None = _color(None, optional=True)
    text_color: tuple = _color((255, 255, 255))


@dataclass(frozen=True)
class Sections:
    logo: bool = field(default=True, metadata={"kind": "bool"})
    company_info: bool = field(default=True, metadata={"kind": "bool"})
    bill_to: bool = field(default=True, metadata={"kind": "bool"})
    invoice_dates: bool = field(default=True, metadata={"kind": "bool"})
    items_table: bool = field(default=True, metadata={"kind": "bool"})
    totals: bool = field(default=True, metadata={"kind": "bool"})
    notes: bool = field(default=True, metadata={"kind": "bool"})
    footer: bool = field(default=True, metadata={"kind": "bool"})

    def required_parts(self) -> dict[str, str]:
        """Config part name -> the enabled section that needs it."""
        needed = {}
        if self.logo:
            needed["logo"] = "logo"
        if self.totals:
            needed["currency"] = "totals"
        if self.items_table:
            needed["table"] = "itemsTable"
            needed["currency"] = "itemsTable"
        if self.invoice_dates:
            needed["date_format"] = "invoiceDates"
        if self.footer:
            needed["footer"] = "footer"
        return needed


@dataclass(frozen=True)
class TableConfig:
    columns: tuple = field(default=TABLE_COLUMNS, metadata={"kind": "columns"})
    show_alternating_rows: bool = field(default=True, metadata={"kind": "bool"})
    row_spacing: float = _num(4.0)
    base_row_height: float = _num(24.0, min=1.0)
    border_width: float = _num(0.5)
    border_color: tuple | None = _color(None, optional=True)
    header_background: tuple | None = _color(None, optional=True)
    header_text_color: tuple = _color((255, 255, 255))


@dataclass(frozen=True)
class DateFormat:
    format: str = "MMMM d, yyyy"
    locale: str = "en-US"


@dataclass(frozen=True)
class CurrencyFormat:
    symbol: str = "$"
    decimal_places: int = field(default=2, metadata={"kind": "int", "max": 6})
    locale: str = "en-US"
    placement: str = field(default="before", metadata={"kind": "choice", "choices": ("before", "after")})


@dataclass(frozen=True)
class FooterConfig:
    text: str = ""
    show_thank_you: bool = field(default=True, metadata={"kind": "bool"})
    thank_you_text: str = "Thank you for your business!"


@dataclass(frozen=True)
class PdfMetadata:
    title: str = ""
    author: str = ""
    subject: str = ""
    keywords: tuple = field(default=(), metadata={"kind": "strings"})


@dataclass(frozen=True)
class PrintConfig:
    include_page_numbers: bool = field(default=True, metadata={"kind": "bool"})
    page_number_position: str = "bottom-center"
    dpi: int = field(default=300, metadata={"kind": "int", "min": 1.0})
    bleed: float = _num(0.0)
    pdf_metadata: PdfMetadata = _sub(PdfMetadata)


@dataclass(frozen=True)
class WatermarkConfig:
    enabled: bool = field(default=False, metadata={"kind": "bool"})
    text: str = "DRAFT"
    opacity: float = _num(0.1, max=1.0)
    rotation: float = field(default=45.0, metadata={"kind": "angle"})
    font_size: float = _num(60.0, min=1.0)
    color: tuple = _color((156, 163, 175))


# Parts that a section toggle can make optional
_OPTIONAL_PARTS = ("logo", "table", "date_format", "currency", "footer", "print_settings", "watermark")


@dataclass(frozen=True)
class RenderConfig:
    colors: Colors = _sub(Colors)
    layout: Layout = _sub(Layout)
    typography: Typography = _sub(Typography)
    sections: Sections = _sub(Sections)
    logo: LogoConfig | None = _sub(LogoConfig, optional=True)
    table: TableConfig | None = _sub(TableConfig, optional=True)
    date_format: DateFormat | None = _sub(DateFormat, optional=True)
    currency: CurrencyFormat | None = _sub(CurrencyFormat, optional=True)
    footer: FooterConfig | None = _sub(FooterConfig, optional=True)
    print_settings: PrintConfig | None = _sub(PrintConfig, key="print", optional=True)
    watermark: WatermarkConfig | None = _sub(WatermarkConfig, optional=True)

    @classmethod
    def from_dict(cls, data) -> "RenderConfig":
        """
        Parse the stored JSON document.

        colors/layout/typography/sections are always required; the other
        parts only while the section using them is enabled.
        """
        if not isinstance(data, Mapping):
            raise InvalidConfig("config: expected an object")
        _warn_unknown_keys(cls, data, "config")

        by_name = {f.name: f for f in fields(cls)}
        values = {}
        for name in ("colors", "layout", "typography", "sections"):
            f = by_name[name]
            found, raw = _lookup(data, f)
            if not found or raw is None:
                raise InvalidConfig(f"config.{_json_key(f)} is required")
            values[name] = _convert(f, raw, f"config.{_json_key(f)}")

        needed = values["sections"].required_parts()
        for name in _OPTIONAL_PARTS:
            f = by_name[name]
            key = _json_key(f)
            found, raw = _lookup(data, f)
            required_by = needed.get(name)
            if name == "watermark" and isinstance(raw, Mapping) and raw.get("enabled"):
                required_by = "watermark"
            if name == "print_settings" and found and raw is not None:
                required_by = "print"
            if not found or raw is None:
                if required_by:
                    raise InvalidConfig(f"config.{key} is required while {required_by} is enabled")
                values[name] = None
                continue
            try:
                values[name] = _convert(f, raw, f"config.{key}")
            except InvalidConfig as e:
                if required_by:
                    raise
                logger.warning("Ignoring malformed config for disabled section: %s", e)
                values[name] = None
        return cls(**values)

    def to_dict(self) -> dict:
        return _dump(self)

    def updated(self, path: str, value) -> "RenderConfig":
        """
        Return a copy with one field replaced, e.g.
        config.updated("watermark.opacity", 0.2).
        """
        parts = [p for p in (path or "").split(".") if p]
        if not parts:
            raise InvalidConfig("config path is empty")
        return _replace_path(self, parts, value, "config")

    def validate_for_render(self) -> None:
        for name, section in self.sections.required_parts().items():
            if getattr(self, name) is None:
                f = next(f for f in fields(self) if f.name == name)
                raise InvalidConfig(f"config.{_json_key(f)} is required while {section} is enabled")
        if self.sections.items_table and not self.table.columns:
            raise InvalidConfig("config.table.columns must list at least one column")
        if self.watermark is not None and self.watermark.enabled and not self.watermark.text.strip():
            raise InvalidConfig("config.watermark.text is required while watermark is enabled")


def _replace_path(obj, parts: list[str], value, trail: str):
    name = parts[0]
    by_name = {f.name: f for f in fields(obj)}
    f = by_name.get(name)
    if f is None:
        raise InvalidConfig(f"{trail}: no field named {name!r}")
    path = f"{trail}.{name}"
    if len(parts) == 1:
        new_value = _convert(f, value, path)
    else:
        child = getattr(obj, name)
        if child is None:
            child = f.metadata["type"]()
        if not is_dataclass(child):
            raise InvalidConfig(f"{path}: is not a config section")
        new_value = _replace_path(child, parts[1:], value, path)
    return replace(obj, **{name: new_value})


def default_render_config() -> RenderConfig:
    return RenderConfig()


def load_render_config(path) -> RenderConfig:
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    return RenderConfig.from_dict(data)


def save_render_config(config: RenderConfig, path) -> None:
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(json.dumps(config.to_dict(), indent=2) + "\n", encoding="utf-8")
