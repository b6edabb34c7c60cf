# backend/tares.py
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import VehicleTare, VehicleTareHistory


def record_tare(db: Session, truck_no: str, tare: float) -> VehicleTare:
    """Append *tare* to the truck's history and refresh its rolling average."""
    truck_no = truck_no.strip().upper()
    db.add(VehicleTareHistory(truck_no=truck_no, tare=tare, recorded_at=datetime.utcnow()))
    db.flush()

    avg_tare, entry_count = (
        db.query(func.avg(VehicleTareHistory.tare), func.count(VehicleTareHistory.id))
        .filter(VehicleTareHistory.truck_no == truck_no)
        .one()
    )

    summary = db.query(VehicleTare).filter(VehicleTare.truck_no == truck_no).one_or_none()
    if summary is None:
        summary = VehicleTare(truck_no=truck_no)
        db.add(summary)
    summary.tare = tare
    summary.avg_tare = float(avg_tare if avg_tare is not None else tare)
    summary.entry_count = int(entry_count or 0)
    summary.updated_at = datetime.utcnow()
    return summary


def get_tare(db: Session, truck_no: str) -> Optional[VehicleTare]:
    return db.query(VehicleTare).filter(VehicleTare.truck_no == truck_no.strip().upper()).one_or_none()
