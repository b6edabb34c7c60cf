"""Utility helpers shared across the backend services."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, Optional, Tuple

# Canonical status values, keyed by their lowercase form.
TICKET_STATUSES: Dict[str, str] = {"pending": "Pending", "exited": "Exited"}
SAD_STATUSES: Dict[str, str] = {
    "in progress": "In Progress",
    "on hold": "On Hold",
    "completed": "Completed",
    "archived": "Archived",
}
USER_ROLES = ("admin", "weighbridge", "outgate", "customs", "agent")
REGIMES: Dict[str, str] = {"IM4": "Import", "EX1": "Export", "IM7": "Warehousing"}
APPOINTMENT_STATUSES: Dict[str, str] = {"posted": "Posted", "completed": "Completed"}
PACKING_TYPES: Dict[str, str] = {"container": "container", "bulk": "bulk", "loose cargo": "loose cargo"}

OUT_OF_RANGE_THRESHOLD = 100000
MANUAL_PREFIX = "M-"

_MANUAL_NO = re.compile(r"^M-(\d+)$", re.IGNORECASE)
_EMAIL = re.compile(r"\S+@\S+\.\S+")


def to_number(value) -> float:
    """Lenient numeric parse: strips separators, units and stray characters; 0 on failure."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) if math.isfinite(value) else 0.0
    cleaned = re.sub(r"[^\d.-]", "", str(value))
    if cleaned in ("", ".", "-", "-."):
        return 0.0
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def parse_weight(value) -> Optional[float]:
    """Parse a weight field such as "12,340 kg"; None when missing, not numeric or not finite."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
    else:
        text = re.sub(r"[,\s]+", "", str(value))
        text = re.sub(r"kg", "", text, flags=re.IGNORECASE).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    # nan and inf parse as floats but are not weights
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class Weights:
    gross: Optional[float]
    tare: Optional[float]
    net: Optional[float]


def compute_weights(gross=None, tare=None, net=None) -> Weights:
    """Fill in whichever of gross/tare/net is missing from the other two.

    Supplied values are never overwritten, so an inconsistent triple is
    returned unchanged and left for validate_weights to reject.
    """
    g, t, n = parse_weight(gross), parse_weight(tare), parse_weight(net)

    if g is None and t is not None and n is not None:
        g = n + t
    if n is None and g is not None and t is not None:
        n = g - t
    if t is None and g is not None and n is not None:
        t = g - n

    return Weights(gross=g, tare=t, net=n)


def validate_weights(gross=None, tare=None, net=None) -> Dict[str, str]:
    """Return a field -> message map; empty when the weights are acceptable."""
    weights = compute_weights(gross, tare, net)
    errors: Dict[str, str] = {}

    if weights.gross is None:
        errors["gross"] = "Invalid or missing gross"
    if weights.tare is None:
        errors["tare"] = "Invalid or missing tare"
    if weights.net is None:
        errors["net"] = "Invalid or missing net"

    if weights.gross is not None and weights.tare is not None:
        if not weights.gross > weights.tare:
            errors["gross"] = "Gross must be greater than Tare"
            errors["tare"] = "Tare must be less than Gross"
        elif weights.net is not None and abs((weights.gross - weights.tare) - weights.net) > 1e-6:
            errors["net"] = "Net must equal Gross minus Tare"

    return errors


def out_of_range_fields(weights: Weights) -> list[str]:
    return [
        name
        for name in ("gross", "tare", "net")
        if getattr(weights, name) is not None and abs(getattr(weights, name)) >= OUT_OF_RANGE_THRESHOLD
    ]


def is_manual_ticket_no(ticket_no: Optional[str]) -> bool:
    return bool(ticket_no) and str(ticket_no).strip().upper().startswith(MANUAL_PREFIX)


def next_manual_ticket_no(existing: Iterable[Optional[str]]) -> str:
    """Return the next M-NNNN number above the highest manual number in *existing*."""
    highest = 0
    for ticket_no in existing:
        if not ticket_no:
            continue
        match = _MANUAL_NO.match(str(ticket_no).strip())
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{MANUAL_PREFIX}{highest + 1:04d}"


def _normalize_choice(value: Optional[str], choices: Dict[str, str], kind: str) -> str:
    if value is None:
        raise ValueError(f"Missing {kind}")
    key = " ".join(str(value).replace("_", " ").split()).lower()
    if key not in choices:
        raise ValueError(f"Invalid {kind} '{value}'")
    return choices[key]


def normalize_ticket_status(value: Optional[str]) -> str:
    return _normalize_choice(value, TICKET_STATUSES, "ticket status")


def normalize_sad_status(value: Optional[str]) -> str:
    return _normalize_choice(value, SAD_STATUSES, "SAD status")


def normalize_role(value: Optional[str]) -> str:
    return _normalize_choice(value, {role: role for role in USER_ROLES}, "role")


def normalize_appointment_status(value: Optional[str]) -> str:
    return _normalize_choice(value, APPOINTMENT_STATUSES, "appointment status")


def normalize_packing_type(value: Optional[str]) -> str:
    return _normalize_choice(value, PACKING_TYPES, "packing type")


def appointment_numbers(pickup: date, day_seq: int, month_seq: int) -> Tuple[str, str]:
    """Appointment (YYMMDD + 4 digits) and weighbridge (WB + YYMM + 5 digits) numbers."""
    return f"{pickup:%y%m%d}{day_seq:04d}", f"WB{pickup:%y%m}{month_seq:05d}"


def normalize_regime(value: Optional[str]) -> Optional[str]:
    if value is None or not str(value).strip():
        return None
    code = str(value).strip().upper()
    if code not in REGIMES:
        raise ValueError(f"Invalid regime '{value}'")
    return code


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL.fullmatch(value or ""))


def normalize_phone_numbers(value: Optional[str]) -> str:
    """Normalize a comma separated recipient list: digits only, no leading + or 00."""
    if not value:
        return ""
    numbers = []
    for part in str(value).split(","):
        digits = re.sub(r"[^\d+]", "", part.strip())
        digits = re.sub(r"^\+", "", digits)
        digits = re.sub(r"^00", "", digits)
        if digits:
            numbers.append(digits)
    return ",".join(numbers)


def parse_timestamp(raw: str | datetime | None) -> datetime:
    """Parse a weighbridge timestamp into an aware UTC datetime."""
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)

    text = (raw or "").strip()
    if not text:
        return datetime.now(timezone.utc)

    parsers: Iterable[str] = (
        "%Y-%m-%dT%H:%M:%S.%fZ",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d %H:%M",
        "%d/%m/%Y %H:%M",
        "%Y-%m-%d",
    )

    # First try Python's ISO parser which covers most cases, then iterate fallbacks.
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        else:
            parsed = parsed.astimezone(timezone.utc)
        return parsed
    except ValueError:
        pass

    for fmt in parsers:
        try:
            parsed = datetime.strptime(text, fmt)
            return parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    return datetime.now(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    """Strip tzinfo after converting to UTC; rows are stored as naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def day_bounds(
    date_from: Optional[date], date_to: Optional[date]
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive calendar-day filter as a [start, end) datetime pair."""
    start = datetime.combine(date_from, time.min) if date_from else None
    end = datetime.combine(date_to, time.min) + timedelta(days=1) if date_to else None
    return start, end


__all__ = [
    "APPOINTMENT_STATUSES",
    "OUT_OF_RANGE_THRESHOLD",
    "PACKING_TYPES",
    "REGIMES",
    "SAD_STATUSES",
    "TICKET_STATUSES",
    "USER_ROLES",
    "Weights",
    "appointment_numbers",
    "compute_weights",
    "day_bounds",
    "is_manual_ticket_no",
    "is_valid_email",
    "next_manual_ticket_no",
    "normalize_appointment_status",
    "normalize_packing_type",
    "normalize_phone_numbers",
    "normalize_regime",
    "normalize_role",
    "normalize_sad_status",
    "normalize_ticket_status",
    "out_of_range_fields",
    "parse_timestamp",
    "parse_weight",
    "to_naive_utc",
    "to_number",
    "validate_weights",
]
