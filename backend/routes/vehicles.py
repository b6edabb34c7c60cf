from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..database import get_db
from ..models import Outgate, Ticket, VehicleTare
from ..schemas import OutgateRead, VehicleHistory, VehicleTareRead
from ..tares import get_tare
from .tickets import ticket_read

router = APIRouter()


@router.get("/vehicles/{truck_no}/tare", response_model=VehicleTareRead)
def vehicle_tare(truck_no: str, db: Session = Depends(get_db)) -> VehicleTare:
    """Last recorded tare and rolling average for a truck."""
    tare = get_tare(db, truck_no)
    if not tare:
        raise HTTPException(status_code=404, detail=f"No tare recorded for {truck_no}")
    return tare


@router.get("/vehicles/{truck_no}/history", response_model=VehicleHistory)
def vehicle_history(
    truck_no: str,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> VehicleHistory:
    plate = truck_no.strip().upper()
    tickets = (
        db.query(Ticket)
        .filter(func.upper(Ticket.truck_no) == plate)
        .order_by(Ticket.date.desc(), Ticket.id.desc())
        .limit(limit)
        .all()
    )
    exits = (
        db.query(Outgate)
        .filter(func.upper(Outgate.vehicle_number) == plate)
        .order_by(Outgate.created_at.desc(), Outgate.id.desc())
        .limit(limit)
        .all()
    )
    tare = get_tare(db, plate)
    return VehicleHistory(
        truck_no=plate,
        tare=VehicleTareRead.model_validate(tare) if tare else None,
        tickets=[ticket_read(ticket) for ticket in tickets],
        exits=[OutgateRead.model_validate(row) for row in exits],
    )
