import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..deletions import not_pending_deletion, schedule_deletion
from ..deps import current_user
from ..models import Driver, PendingDeletion, User
from ..schemas import DriverCreate, DriverPage, DriverRead, DriverUpdate, PendingDeletionRead
from ..storage import make_file_url, store_upload

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_driver_or_404(db: Session, driver_id: int) -> Driver:
    driver = db.get(Driver, driver_id)
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found")
    return driver


def _check_unique(
    db: Session,
    phone: Optional[str],
    license_number: Optional[str],
    exclude_id: Optional[int] = None,
) -> None:
    """Friendly 409s before the write; the unique indexes remain the backstop."""
    if phone:
        query = db.query(Driver.id).filter(Driver.phone == phone)
        if exclude_id is not None:
            query = query.filter(Driver.id != exclude_id)
        if query.first():
            raise HTTPException(status_code=409, detail="A driver with this phone number already exists")
    if license_number:
        query = db.query(Driver.id).filter(Driver.license_number == license_number)
        if exclude_id is not None:
            query = query.filter(Driver.id != exclude_id)
        if query.first():
            raise HTTPException(status_code=409, detail="A driver with this license number already exists")


def _commit_or_409(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Phone or license number already registered")


@router.get("/drivers", response_model=DriverPage)
def list_drivers(
    name: Optional[str] = Query(None),
    phone: Optional[str] = Query(None),
    license_number: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> DriverPage:
    query = db.query(Driver).filter(not_pending_deletion("drivers", Driver.id))
    if name:
        query = query.filter(Driver.name.ilike(f"%{name.strip()}%"))
    if phone:
        query = query.filter(Driver.phone.ilike(f"%{phone.strip()}%"))
    if license_number:
        query = query.filter(Driver.license_number.ilike(f"%{license_number.strip()}%"))

    total = query.count()
    drivers = query.order_by(Driver.name.asc(), Driver.id.asc()).offset(offset).limit(limit).all()
    return DriverPage(items=[DriverRead.model_validate(driver) for driver in drivers], total=total)


@router.get("/drivers/{driver_id}", response_model=DriverRead)
def get_driver(driver_id: int, db: Session = Depends(get_db)) -> Driver:
    return _get_driver_or_404(db, driver_id)


@router.post("/drivers", response_model=DriverRead, status_code=201)
def create_driver(payload: DriverCreate, db: Session = Depends(get_db)) -> Driver:
    _check_unique(db, payload.phone, payload.license_number)
    driver = Driver(**payload.model_dump())
    db.add(driver)
    _commit_or_409(db)
    db.refresh(driver)
    logger.info("Registered driver %s", driver.name)
    return driver


@router.put("/drivers/{driver_id}", response_model=DriverRead)
def update_driver(driver_id: int, payload: DriverUpdate, db: Session = Depends(get_db)) -> Driver:
    driver = _get_driver_or_404(db, driver_id)
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes and not changes["name"]:
        raise HTTPException(status_code=422, detail="Name is required")
    if "phone" in changes and not changes["phone"]:
        raise HTTPException(status_code=422, detail="Phone is required")

    _check_unique(db, changes.get("phone"), changes.get("license_number"), exclude_id=driver.id)
    for key, value in changes.items():
        setattr(driver, key, value)
    _commit_or_409(db)
    db.refresh(driver)
    return driver


@router.post("/drivers/{driver_id}/suspend", response_model=DriverRead)
def suspend_driver(
    driver_id: int,
    suspended: bool = Query(True, description="false lifts the suspension"),
    db: Session = Depends(get_db),
) -> Driver:
    driver = _get_driver_or_404(db, driver_id)
    driver.is_suspended = suspended
    db.commit()
    db.refresh(driver)
    logger.info("Driver %s %s", driver.name, "suspended" if suspended else "reinstated")
    return driver


@router.post("/drivers/{driver_id}/picture", response_model=DriverRead)
async def upload_driver_picture(
    driver_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
) -> Driver:
    driver = _get_driver_or_404(db, driver_id)
    if file.content_type and not file.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Driver picture must be an image")
    path, _ = await store_upload(file, "drivers", str(driver.id))
    driver.picture_url = make_file_url(path)
    db.commit()
    db.refresh(driver)
    return driver


@router.delete("/drivers/{driver_id}", response_model=PendingDeletionRead, status_code=202)
def delete_driver(
    driver_id: int,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> PendingDeletion:
    driver = _get_driver_or_404(db, driver_id)
    return schedule_deletion(
        db,
        "drivers",
        driver,
        settings.undo_window_seconds,
        requested_by=user.id if user else None,
    )
