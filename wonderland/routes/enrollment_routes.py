from datetime import datetime

import stripe
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wonderland.auth.dependencies import (
    get_current_claims,
    normalize_email,
    require_self_or_forbidden,
    role_required,
)
from wonderland.auth.jwt_handler import IdentityClaims
from wonderland.core import config
from wonderland.core.errors import database_unavailable, forbidden, payment_provider_unavailable
from wonderland.database import get_db
from wonderland.models.payment import Payment
from wonderland.models.selection import Selection
from wonderland.models.user import STUDENT_ROLE, User
from wonderland.services import enrollment, payments
from wonderland.services.enrollment import CommitStatus

router = APIRouter(tags=['enrollment'])

COMMIT_STATUS_CODES = {
    CommitStatus.COMMITTED: status.HTTP_201_CREATED,
    CommitStatus.REPLAYED: status.HTTP_200_OK,
    CommitStatus.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    CommitStatus.CONFLICT: status.HTTP_409_CONFLICT,
    CommitStatus.FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class SelectClassRequest(BaseModel):
    class_id: int


class SelectionResponse(BaseModel):
    id: int
    student_email: str
    class_id: int
    class_name: str | None = None
    price: float
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class PaymentIntentRequest(BaseModel):
    selection_id: int


class PaymentIntentResponse(BaseModel):
    client_secret: str


class CommitPaymentRequest(BaseModel):
    class_id: int
    selection_id: int
    transaction_id: str

    @field_validator('transaction_id')
    @classmethod
    def validate_transaction_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Transaction id is required.')
        return normalized


class PaymentResponse(BaseModel):
    id: int
    student_email: str
    class_id: int
    class_name: str | None = None
    selected_class_id: int
    amount: float
    transaction_id: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


@router.post('/selections', response_model=SelectionResponse, status_code=status.HTTP_201_CREATED)
def create_selection(
    data: SelectClassRequest,
    student: User = Depends(role_required(STUDENT_ROLE)),
    db: Session = Depends(get_db),
):
    try:
        return enrollment.select_class(db, student.email, data.class_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/selections', response_model=list[SelectionResponse])
def list_selections(
    email: str = Query(default=''),
    claims: IdentityClaims = Depends(get_current_claims),
    db: Session = Depends(get_db),
):
    if not email.strip():
        return []
    if not require_self_or_forbidden(claims.email, email):
        raise forbidden()

    try:
        return db.query(Selection).filter(
            Selection.student_email == normalize_email(email),
        ).order_by(Selection.id.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.delete('/selections/{selection_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_selection(
    selection_id: int,
    student: User = Depends(role_required(STUDENT_ROLE)),
    db: Session = Depends(get_db),
):
    try:
        enrollment.delete_selection(db, student.email, selection_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/payment-intent', response_model=PaymentIntentResponse)
def create_payment_intent(
    data: PaymentIntentRequest,
    student: User = Depends(role_required(STUDENT_ROLE)),
    db: Session = Depends(get_db),
):
    try:
        selection = enrollment.get_owned_selection(db, student.email, data.selection_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    try:
        client_secret = payments.create_payment_intent(
            payments.price_to_minor_units(selection.price),
            selection_id=selection.id,
        )
    except (stripe.StripeError, payments.PaymentProviderNotConfigured) as exc:
        raise payment_provider_unavailable() from exc
    return PaymentIntentResponse(client_secret=client_secret)


def verify_payment(db: Session, student_email: str, data: CommitPaymentRequest) -> None:
    selection = db.query(Selection).filter(
        Selection.id == data.selection_id,
        Selection.student_email == student_email,
    ).first()
    if selection is None:
        # Already consumed or not the caller's; the commit reports it without writing.
        return

    try:
        confirmed = payments.payment_confirmed(
            data.transaction_id,
            selection_id=selection.id,
            amount=payments.price_to_minor_units(selection.price),
        )
    except (stripe.StripeError, payments.PaymentProviderNotConfigured) as exc:
        raise payment_provider_unavailable() from exc
    if not confirmed:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail='Payment has not been confirmed.',
        )


@router.post('/payments')
def commit_payment(
    data: CommitPaymentRequest,
    student: User = Depends(role_required(STUDENT_ROLE)),
    db: Session = Depends(get_db),
):
    try:
        if config.PAYMENT_VERIFY_INTENTS:
            verify_payment(db, student.email, data)

        result = enrollment.commit_enrollment(
            db,
            student_email=student.email,
            class_id=data.class_id,
            selection_id=data.selection_id,
            transaction_id=data.transaction_id,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return JSONResponse(
        status_code=COMMIT_STATUS_CODES[result.status],
        content=result.model_dump(mode='json'),
    )


@router.get('/payments', response_model=list[PaymentResponse])
def list_payments(
    email: str = Query(default=''),
    claims: IdentityClaims = Depends(get_current_claims),
    db: Session = Depends(get_db),
):
    if not email.strip():
        return []
    if not require_self_or_forbidden(claims.email, email):
        raise forbidden()

    try:
        return db.query(Payment).filter(
            Payment.student_email == normalize_email(email),
        ).order_by(Payment.created_at.desc(), Payment.id.desc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
