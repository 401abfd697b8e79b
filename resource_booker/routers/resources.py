from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional
from resource_booker.db import get_db
from resource_booker.models.booking import Booking
from resource_booker.models.resource import Resource
from resource_booker.schemas.booking import BookingResponse
from resource_booker.schemas.resource import ResourceCreate, ResourceUpdate, ResourceResponse
from resource_booker.services.reaper import ExpiryReaper
from resource_booker.utils.exceptions import BookingError


router = APIRouter(
    prefix="/resources",
    tags=["resources"],
)

maintenance_router = APIRouter(
    prefix="/maintenance",
    tags=["maintenance"],
)


@router.post("/", response_model=ResourceResponse, status_code=status.HTTP_201_CREATED)
def create_resource(resource: ResourceCreate, db: Session = Depends(get_db)):
    """
    Register a bookable resource.
    """
    db_resource = Resource(**resource.model_dump())
    db.add(db_resource)
    db.commit()
    db.refresh(db_resource)
    return db_resource


@router.get("/", response_model=List[ResourceResponse])
def get_resources(skip: int = 0, limit: int = 100, db: Session = Depends(get_db)):
    """
    Retrieve a list of all resources.
    """
    resources = db.query(Resource).offset(skip).limit(limit).all()
    return resources


@router.get("/{resource_id}", response_model=ResourceResponse)
def get_resource(resource_id: int, db: Session = Depends(get_db)):
    """
    Retrieve a specific resource by ID.
    """
    resource = db.query(Resource).filter(Resource.id == resource_id).first()
    if not resource:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found")
    return resource


@router.get("/{resource_id}/bookings", response_model=List[BookingResponse])
def get_resource_bookings(resource_id: int, status_filter: Optional[str] = None, db: Session = Depends(get_db)):
    """
    Bookings on a resource ordered by start time, optionally filtered by status.
    """
    if not db.query(Resource.id).filter(Resource.id == resource_id).first():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found")
    query = db.query(Booking).filter(Booking.resource_id == resource_id)
    if status_filter:
        query = query.filter(Booking.status == status_filter)
    return query.order_by(Booking.start_time).all()


@router.put("/{resource_id}", response_model=ResourceResponse)
def update_resource(resource_id: int, resource_update: ResourceUpdate, db: Session = Depends(get_db)):
    """
    Update a resource's details.
    """
    db_resource = db.query(Resource).filter(Resource.id == resource_id).first()
    if not db_resource:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found")

    update_data = resource_update.model_dump(exclude_unset=True)
    for key, value in update_data.items():
        setattr(db_resource, key, value)

    db.commit()
    db.refresh(db_resource)
    return db_resource


@router.delete("/{resource_id}", status_code=status.HTTP_204_NO_CONTENT)
def deactivate_resource(resource_id: int, db: Session = Depends(get_db)):
    """
    Deactivate a resource. Its booking history is kept; it accepts no new bookings.
    """
    db_resource = db.query(Resource).filter(Resource.id == resource_id).first()
    if not db_resource:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found")

    db_resource.is_active = False
    db.commit()
    return None


@maintenance_router.post("/expire")
def run_expiry_sweep(db: Session = Depends(get_db)):
    """
    Expire every booking whose window has passed without being finalised.
    """
    try:
        return {"expired": ExpiryReaper(db).sweep()}
    except BookingError as exc:
        raise exc.to_http_exception()
