from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from math import floor, isfinite

from .errors import ValidationError

FIELD_KEYS = ("name", "eventName", "date")

DEFAULT_FONT_SIZES: dict[str, int] = {
    "name": 24,
    "eventName": 20,
    "date": 18,
}

DEFAULT_COLOR = "#000000"

_HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{2})([0-9a-fA-F]{2})([0-9a-fA-F]{2})$")


@dataclass(frozen=True)
class FieldPlacement:
    """Where one text field goes on the template, in PDF points from top-left."""

    x: int | None = None
    y: int | None = None
    font_size: int = 20
    color: str = DEFAULT_COLOR

    @property
    def is_placed(self) -> bool:
        return self.x is not None and self.y is not None

    def to_dict(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "fontSize": self.font_size,
            "color": self.color,
        }


def _default_placement(key: str) -> FieldPlacement:
    return FieldPlacement(font_size=DEFAULT_FONT_SIZES[key])


def _coerce_coordinate(value) -> int | None:
    if value is None or value == "":
        return None
    try:
        return round_point(float(value))
    except (TypeError, ValueError):
        return None


def _placement_from_dict(key: str, raw) -> FieldPlacement:
    base = _default_placement(key)
    if not isinstance(raw, dict):
        return base
    try:
        font_size = int(raw.get("fontSize") or base.font_size)
    except (TypeError, ValueError):
        font_size = base.font_size
    if font_size <= 0:
        font_size = base.font_size
    color = str(raw.get("color") or DEFAULT_COLOR)
    return FieldPlacement(
        x=_coerce_coordinate(raw.get("x")),
        y=_coerce_coordinate(raw.get("y")),
        font_size=font_size,
        color=color,
    )


@dataclass(frozen=True)
class CertificateLayout:
    name: FieldPlacement = field(default_factory=lambda: _default_placement("name"))
    event_name: FieldPlacement = field(
        default_factory=lambda: _default_placement("eventName")
    )
    date: FieldPlacement = field(default_factory=lambda: _default_placement("date"))
    auto_send: bool = True

    @classmethod
    def from_dict(cls, data: dict | None, auto_send: bool | None = None) -> "CertificateLayout":
        data = data or {}
        if auto_send is None:
            auto_send = bool(data.get("autoSend", True))
        return cls(
            name=_placement_from_dict("name", data.get("name")),
            event_name=_placement_from_dict("eventName", data.get("eventName")),
            date=_placement_from_dict("date", data.get("date")),
            auto_send=bool(auto_send),
        )

    def fields_dict(self) -> dict:
        return {key: self.get(key).to_dict() for key in FIELD_KEYS}

    def to_dict(self) -> dict:
        payload = self.fields_dict()
        payload["autoSend"] = self.auto_send
        return payload

    def get(self, key: str) -> FieldPlacement:
        return getattr(self, _attr_for(key))

    def with_field(self, key: str, placement: FieldPlacement) -> "CertificateLayout":
        return replace(self, **{_attr_for(key): placement})

    def placed_fields(self) -> list[tuple[str, FieldPlacement]]:
        return [(key, self.get(key)) for key in FIELD_KEYS if self.get(key).is_placed]

    @property
    def has_placed_field(self) -> bool:
        return bool(self.placed_fields())


def _attr_for(key: str) -> str:
    if key == "name":
        return "name"
    if key in ("eventName", "event_name"):
        return "event_name"
    if key == "date":
        return "date"
    raise ValidationError(f"Unknown certificate field: {key}")


def round_point(value: float) -> int:
    """Round half up to a whole PDF point."""
    return int(floor(value + 0.5))


def place_field(
    layout: CertificateLayout,
    field_name: str,
    click_x: float,
    click_y: float,
    scale: float,
) -> CertificateLayout:
    """Convert a click on the scaled preview into template coordinates.

    ``click_x``/``click_y`` are measured from the preview's top-left corner;
    the stored position is the same point on the unscaled page.
    """
    try:
        scale = float(scale)
    except (TypeError, ValueError):
        raise ValidationError("Preview scale must be a number") from None
    if not isfinite(scale) or scale <= 0:
        raise ValidationError("Preview scale must be positive")
    try:
        x, y = float(click_x) / scale, float(click_y) / scale
    except (TypeError, ValueError):
        raise ValidationError("clickX and clickY are required numbers") from None
    if not (isfinite(x) and isfinite(y)):
        raise ValidationError("clickX and clickY must be finite numbers")
    current = layout.get(field_name)
    placed = replace(
        current,
        x=round_point(x),
        y=round_point(y),
    )
    return layout.with_field(field_name, placed)


def merge_layout(
    layout: CertificateLayout, fields: dict | None, auto_send: bool | None = None
) -> CertificateLayout:
    """Overlay submitted field dicts on an existing layout.

    Fields missing from ``fields`` keep their stored placement.
    """
    fields = fields or {}
    merged = layout
    for key in FIELD_KEYS:
        if key not in fields:
            continue
        raw = fields[key]
        if not isinstance(raw, dict):
            raise ValidationError(f"Certificate field {key} must be an object")
        current = merged.get(key)
        combined = current.to_dict()
        combined.update({k: v for k, v in raw.items() if k in combined})
        merged = merged.with_field(key, _placement_from_dict(key, combined))
    unknown = set(fields) - set(FIELD_KEYS)
    if unknown:
        raise ValidationError(
            "Unknown certificate field: " + ", ".join(sorted(unknown))
        )
    if auto_send is not None:
        merged = replace(merged, auto_send=bool(auto_send))
    return merged


def save_certificate_config(event, fields: dict | None, auto_send: bool | None = None) -> CertificateLayout:
    """Merge ``fields`` into the event's stored layout; caller commits."""
    layout = merge_layout(event.certificate_layout, fields, auto_send)
    event.certificate_layout = layout
    return layout


def parse_hex_color(value: str | None) -> tuple[float, float, float]:
    """Return an RGB triple in 0..1; anything unparseable is black."""
    match = _HEX_COLOR_RE.match((value or "").strip())
    if not match:
        return (0.0, 0.0, 0.0)
    return tuple(int(part, 16) / 255 for part in match.groups())
