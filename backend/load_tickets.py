"""
Import weighbridge ticket exports (JSON) into the database.

Usage:
    python -m backend.load_tickets                  # loads backend/data/tickets.json
    python -m backend.load_tickets --file path      # load a specific file
    python -m backend.load_tickets --reset          # remove unexited tickets before importing
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

from sqlalchemy import select

from .database import SessionLocal, init_db
from .logger import setup_logger
from .models import Outgate, Ticket
from .utils import (
    compute_weights,
    is_manual_ticket_no,
    normalize_ticket_status,
    parse_timestamp,
    to_naive_utc,
    validate_weights,
)

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"
DEFAULT_JSON = DATA_DIR / "tickets.json"

# Scale exports use either snake_case or the bridge software's camelCase keys.
FIELD_ALIASES = {
    "ticket_no": ("ticket_no", "ticketNo", "ticket_number"),
    "truck_no": ("truck_no", "truckNo", "vehicle_number", "gnsw_truck_no"),
    "sad_no": ("sad_no", "sadNo"),
    "driver": ("driver",),
    "consignee": ("consignee",),
    "operation": ("operation",),
    "container_no": ("container_no", "containerNo", "container_id"),
    "scale_name": ("scale_name", "scaleName"),
    "gross": ("gross", "gross_weight"),
    "tare": ("tare", "tare_weight"),
    "net": ("net", "net_weight", "weight"),
    "date": ("date", "ticket_date", "submitted_at"),
    "status": ("status",),
}


def pick(entry: dict, field: str):
    for key in FIELD_ALIASES[field]:
        value = entry.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def ticket_fields(entry: dict) -> dict:
    """Map one exported record onto Ticket column values."""
    ticket_no = _text(pick(entry, "ticket_no"))
    if not ticket_no:
        raise ValueError("record has no ticket number")

    raw = {name: pick(entry, name) for name in ("gross", "tare", "net")}
    # partial records may omit weights; anything present must be valid
    errors = {
        name: message
        for name, message in validate_weights(**raw).items()
        if raw[name] is not None
    }
    if errors:
        raise ValueError("; ".join(errors.values()))

    weights = compute_weights(raw["gross"], raw["tare"], raw["net"])
    status = pick(entry, "status")
    raw_date = pick(entry, "date")

    fields = {
        "ticket_no": ticket_no,
        "truck_no": _text(pick(entry, "truck_no")),
        "sad_no": _text(pick(entry, "sad_no")),
        "driver": _text(pick(entry, "driver")),
        "consignee": _text(pick(entry, "consignee")),
        "operation": _text(pick(entry, "operation")),
        "container_no": _text(pick(entry, "container_no")),
        "gross": weights.gross,
        "tare": weights.tare,
        "net": weights.net,
        "status": normalize_ticket_status(status) if status else "Pending",
        "manual": is_manual_ticket_no(ticket_no),
    }
    scale = _text(pick(entry, "scale_name"))
    if scale:
        fields["scale_name"] = scale
    if raw_date:
        fields["date"] = to_naive_utc(parse_timestamp(str(raw_date)))
    return fields


def load_tickets(records: Iterable[dict], *, reset: bool = False) -> Tuple[int, int, int]:
    """Create or update tickets keyed by ticket number; returns (imported, updated, skipped)."""
    init_db()
    session = SessionLocal()

    try:
        if reset:
            # exited tickets are referenced by outgate rows and stay
            exited_ids = select(Outgate.ticket_id)
            session.query(Ticket).filter(Ticket.id.not_in(exited_ids)).delete(synchronize_session=False)
            session.commit()

        imported = 0
        updated = 0
        skipped = 0

        for index, entry in enumerate(records):
            try:
                fields = ticket_fields(entry)
            except ValueError as exc:
                logger.warning("Skipping record %d: %s", index, exc)
                skipped += 1
                continue

            existing: Optional[Ticket] = (
                session.query(Ticket)
                .filter(Ticket.ticket_no == fields["ticket_no"])
                .one_or_none()
            )

            if existing:
                for key, value in fields.items():
                    if value is not None:
                        setattr(existing, key, value)
                updated += 1
            else:
                session.add(Ticket(**fields))
                session.flush()
                imported += 1

        session.commit()
        logger.info("Tickets imported: %d, updated: %d, skipped: %d", imported, updated, skipped)
        print(f"Tickets imported: {imported}, updated: {updated}, skipped: {skipped}")
        return imported, updated, skipped
    finally:
        session.close()


def load_json_records(path: Path) -> list:
    if not path.exists():
        raise FileNotFoundError(f"JSON tickets file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if isinstance(data, dict):
        data = data.get("tickets", [])
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON list of tickets in {path}")
    return data


def parse_cli_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Load weighbridge ticket JSON exports into the database."
    )
    parser.add_argument(
        "--file",
        "-f",
        type=Path,
        default=DEFAULT_JSON,
        help=f"Path to the tickets JSON file (default: {DEFAULT_JSON})",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete tickets without an outgate record before importing.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_cli_args(argv)
    setup_logger()
    records = load_json_records(args.file)
    load_tickets(records, reset=args.reset)


if __name__ == "__main__":
    main()
