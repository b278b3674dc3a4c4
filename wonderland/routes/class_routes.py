from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wonderland.core.errors import database_unavailable
from wonderland.database import get_db
from wonderland.models.class_offering import APPROVED_STATUS, ClassOffering

router = APIRouter(tags=['classes'])

POPULAR_CLASSES_LIMIT = 6


class ClassOfferingResponse(BaseModel):
    id: int
    name: str
    image_url: str | None = None
    instructor_email: str
    instructor_name: str | None = None
    price: float
    available_seats: int
    enrolled: int
    status: str

    class Config:
        from_attributes = True


@router.get('', response_model=list[ClassOfferingResponse])
def list_classes(db: Session = Depends(get_db)):
    try:
        return db.query(ClassOffering).filter(
            ClassOffering.status == APPROVED_STATUS,
        ).order_by(ClassOffering.id.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/popular', response_model=list[ClassOfferingResponse])
def list_popular_classes(db: Session = Depends(get_db)):
    try:
        return db.query(ClassOffering).filter(
            ClassOffering.status == APPROVED_STATUS,
        ).order_by(
            ClassOffering.enrolled.desc(),
            ClassOffering.id.asc(),
        ).limit(POPULAR_CLASSES_LIMIT).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
