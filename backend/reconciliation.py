"""SAD reconciliation: ticket weights summed against the declared customs weight."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

import numpy as np

from .utils import REGIMES, to_number

MATCH_TOLERANCE = 0.01
ANOMALY_Z_THRESHOLD = 2.0
ANOMALY_RATIO_LOW = 0.8
ANOMALY_RATIO_HIGH = 1.2

_REGIME_WORDS = {
    "import": "IM4",
    "export": "EX1",
    "warehousing": "IM7",
    "warehouse": "IM7",
}


def _field(row: Any, name: str, default=None):
    if isinstance(row, Mapping):
        return row.get(name, default)
    return getattr(row, name, default)


def ticket_net_weight(ticket: Any) -> float:
    """Net weight of a ticket, falling back to the raw scale weight when net is missing."""
    net = _field(ticket, "net")
    if net is None:
        net = _field(ticket, "weight")
    return to_number(net)


@dataclass
class SadTotals:
    total_recorded_weight: float
    ticket_count: int
    manual_count: int

    @property
    def uploaded_count(self) -> int:
        return max(0, self.ticket_count - self.manual_count)


def sad_totals(tickets: Iterable[Any]) -> SadTotals:
    total = 0.0
    count = 0
    manual = 0
    for ticket in tickets:
        total += ticket_net_weight(ticket)
        count += 1
        ticket_no = str(_field(ticket, "ticket_no") or "")
        if ticket_no.upper().startswith("M-"):
            manual += 1
    return SadTotals(total_recorded_weight=total, ticket_count=count, manual_count=manual)


def is_discharge_complete(declared_weight, recorded_weight) -> bool:
    declared = to_number(declared_weight)
    return declared > 0 and to_number(recorded_weight) >= declared


@dataclass
class Discrepancy:
    band: str  # no_declared, match, over, under
    declared: float
    recorded: float
    diff: float
    pct: float
    message: str


def classify_discrepancy(declared_weight, recorded_weight) -> Discrepancy:
    declared = to_number(declared_weight)
    recorded = to_number(recorded_weight)
    diff = recorded - declared

    if not declared:
        return Discrepancy(
            band="no_declared",
            declared=declared,
            recorded=recorded,
            diff=diff,
            pct=0.0,
            message="No declared weight to compare.",
        )

    pct = round(diff / declared * 100, 2)
    if abs(diff) / max(1.0, declared) < MATCH_TOLERANCE:
        band = "match"
        message = f"Recorded matches declared within 1% ({recorded:,.0f} kg vs {declared:,.0f} kg)."
    elif diff > 0:
        band = "over"
        message = (
            f"Recorded is {diff:,.0f} kg ({pct:.2f}%) higher than declared; "
            "investigate extra tickets or duplicates."
        )
    else:
        band = "under"
        message = (
            f"Recorded is {abs(diff):,.0f} kg ({abs(pct):.2f}%) lower than declared; "
            "check missing tickets or document mismatch."
        )
    return Discrepancy(band=band, declared=declared, recorded=recorded, diff=diff, pct=pct, message=message)


@dataclass
class Anomaly:
    sad_no: str
    ratio: float
    z: float


@dataclass
class AnomalyReport:
    mean: float
    std: float
    flagged: List[Anomaly] = field(default_factory=list)


def detect_anomalies(sads: Iterable[Any]) -> AnomalyReport:
    """Flag SADs whose recorded/declared ratio is an outlier or outside 0.8-1.2."""
    candidates = []
    for sad in sads:
        declared = to_number(_field(sad, "declared_weight"))
        if not declared:
            continue
        recorded = to_number(_field(sad, "total_recorded_weight"))
        candidates.append((str(_field(sad, "sad_no")), recorded / declared))

    if not candidates:
        return AnomalyReport(mean=1.0, std=0.0)

    ratios = np.array([ratio for _, ratio in candidates], dtype=float)
    mean = float(ratios.mean())
    std = float(ratios.std())  # population std

    flagged = []
    for sad_no, ratio in candidates:
        z = (ratio - mean) / std if std > 0 else 0.0
        if abs(z) > ANOMALY_Z_THRESHOLD or ratio < ANOMALY_RATIO_LOW or ratio > ANOMALY_RATIO_HIGH:
            flagged.append(Anomaly(sad_no=sad_no, ratio=round(ratio, 4), z=round(z, 4)))

    return AnomalyReport(mean=mean, std=std, flagged=flagged)


def sad_dashboard_stats(sads: List[Any]) -> Dict[str, Any]:
    total = len(sads)
    statuses = [_field(sad, "status") for sad in sads]
    completed = statuses.count("Completed")
    return {
        "total_sads": total,
        "total_declared": sum(to_number(_field(sad, "declared_weight")) for sad in sads),
        "total_recorded": sum(to_number(_field(sad, "total_recorded_weight")) for sad in sads),
        "completed": completed,
        "in_progress": statuses.count("In Progress"),
        "on_hold": statuses.count("On Hold"),
        "archived": statuses.count("Archived"),
        "active_discrepancies": len(detect_anomalies(sads).flagged),
        "completion_pct": round(completed / total * 100) if total else 0,
    }


def parse_sad_query(text: Optional[str]) -> Dict[str, str]:
    """Turn a free-text search ("completed import 1234") into SAD list filters."""
    query = (text or "").strip()
    if not query:
        return {}
    lower = query.lower()
    filters: Dict[str, str] = {}

    if re.search(r"\bcompleted\b", lower):
        filters["status"] = "Completed"
    elif re.search(r"\bin ?progress\b", lower):
        filters["status"] = "In Progress"
    elif re.search(r"\bon hold\b", lower):
        filters["status"] = "On Hold"
    elif re.search(r"\barchived\b", lower):
        filters["status"] = "Archived"

    number = re.search(r"\b(\d{1,10})\b", query)
    if number:
        filters["sad_no"] = number.group(1)

    if "sad_no" not in filters and "status" not in filters:
        upper = query.upper()
        if upper in REGIMES:
            filters["regime"] = upper
        elif lower in _REGIME_WORDS:
            filters["regime"] = _REGIME_WORDS[lower]

    return filters


__all__ = [
    "Anomaly",
    "AnomalyReport",
    "Discrepancy",
    "SadTotals",
    "classify_discrepancy",
    "detect_anomalies",
    "is_discharge_complete",
    "parse_sad_query",
    "sad_dashboard_stats",
    "sad_totals",
    "ticket_net_weight",
]
