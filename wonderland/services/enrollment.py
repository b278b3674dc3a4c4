"""Class selection and the enrollment commit that follows a confirmed payment.

A commit runs five steps against the users, classes, selected_classes and
payments tables inside a single transaction:

1. record_payment
2. remove_selection
3. increment_enrolled
4. decrement_available_seats (only while seats remain)
5. increment_instructor_students

If any step fails, the transaction is rolled back and the returned
``CommitResult`` says which step failed and which were undone. The unique
index on ``payments.selected_class_id`` makes a retried commit for the same
selection return the earlier payment without touching any counter, and the
unique index on ``payments.transaction_id`` keeps one payment from paying for
two selections.
"""

import logging
from enum import Enum

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from wonderland.auth.dependencies import normalize_email
from wonderland.core.errors import SEAT_UNAVAILABLE_DETAIL, TRANSACTION_USED_DETAIL, conflict, not_found
from wonderland.models.class_offering import APPROVED_STATUS, ClassOffering
from wonderland.models.payment import Payment
from wonderland.models.selection import Selection
from wonderland.models.user import User

logger = logging.getLogger(__name__)

RECORD_PAYMENT = 'record_payment'
REMOVE_SELECTION = 'remove_selection'
INCREMENT_ENROLLED = 'increment_enrolled'
DECREMENT_AVAILABLE_SEATS = 'decrement_available_seats'
INCREMENT_INSTRUCTOR_STUDENTS = 'increment_instructor_students'
COMMIT_STEPS = (
    RECORD_PAYMENT,
    REMOVE_SELECTION,
    INCREMENT_ENROLLED,
    DECREMENT_AVAILABLE_SEATS,
    INCREMENT_INSTRUCTOR_STUDENTS,
)


class CommitStatus(str, Enum):
    COMMITTED = 'committed'
    REPLAYED = 'replayed'
    NOT_FOUND = 'not_found'
    CONFLICT = 'conflict'
    FAILED = 'failed'


class StepStatus(str, Enum):
    APPLIED = 'applied'
    FAILED = 'failed'
    ROLLED_BACK = 'rolled_back'
    SKIPPED = 'skipped'


class StepOutcome(BaseModel):
    step: str
    status: StepStatus
    detail: str | None = None


class CommitResult(BaseModel):
    status: CommitStatus
    steps: list[StepOutcome]
    payment_id: int | None = None
    detail: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in (CommitStatus.COMMITTED, CommitStatus.REPLAYED)


class _StepFailure(Exception):
    def __init__(self, step: str, status: CommitStatus, detail: str):
        super().__init__(detail)
        self.step = step
        self.status = status
        self.detail = detail


def _uniform_result(status: CommitStatus, step_status: StepStatus, detail: str | None = None,
                    payment_id: int | None = None) -> CommitResult:
    return CommitResult(
        status=status,
        steps=[StepOutcome(step=step, status=step_status) for step in COMMIT_STEPS],
        payment_id=payment_id,
        detail=detail,
    )


def _failed_result(applied: list[str], failed_step: str, status: CommitStatus, detail: str) -> CommitResult:
    steps = []
    for step in COMMIT_STEPS:
        if step in applied:
            steps.append(StepOutcome(step=step, status=StepStatus.ROLLED_BACK))
        elif step == failed_step:
            steps.append(StepOutcome(step=step, status=StepStatus.FAILED, detail=detail))
        else:
            steps.append(StepOutcome(step=step, status=StepStatus.SKIPPED))
    return CommitResult(status=status, steps=steps, detail=detail)


def find_payment_for_selection(db: Session, selection_id: int) -> Payment | None:
    return db.query(Payment).filter(Payment.selected_class_id == selection_id).first()


def find_payment_for_transaction(db: Session, transaction_id: str) -> Payment | None:
    return db.query(Payment).filter(Payment.transaction_id == transaction_id).first()


def _replayed(payment: Payment, student_email: str, class_id: int) -> CommitResult:
    if payment.student_email != student_email or payment.class_id != class_id:
        return _uniform_result(CommitStatus.NOT_FOUND, StepStatus.SKIPPED, detail='Selection not found.')
    logger.info('Selection %s was already committed as payment %s', payment.selected_class_id, payment.id)
    return _uniform_result(
        CommitStatus.REPLAYED,
        StepStatus.SKIPPED,
        detail='Payment already recorded for this selection.',
        payment_id=payment.id,
    )


def _resolve_duplicate(db: Session, student_email: str, class_id: int, selection_id: int,
                       transaction_id: str, applied: list[str]) -> CommitResult:
    existing_payment = find_payment_for_selection(db, selection_id)
    if existing_payment is not None:
        # A concurrent request committed the same selection first.
        return _replayed(existing_payment, student_email, class_id)
    if find_payment_for_transaction(db, transaction_id) is not None:
        return _failed_result(applied, RECORD_PAYMENT, CommitStatus.CONFLICT, TRANSACTION_USED_DETAIL)
    logger.error('Enrollment commit for selection %s violated a constraint', selection_id)
    return _failed_result(applied, RECORD_PAYMENT, CommitStatus.FAILED, 'Enrollment could not be recorded.')


def commit_enrollment(
    db: Session,
    student_email: str,
    class_id: int,
    selection_id: int,
    transaction_id: str,
) -> CommitResult:
    student_email = normalize_email(student_email)

    applied: list[str] = []
    current_step = RECORD_PAYMENT

    try:
        existing_payment = find_payment_for_selection(db, selection_id)
        if existing_payment is not None:
            return _replayed(existing_payment, student_email, class_id)

        selection = db.query(Selection).filter(
            Selection.id == selection_id,
            Selection.student_email == student_email,
        ).first()
        if selection is None:
            return _uniform_result(CommitStatus.NOT_FOUND, StepStatus.SKIPPED, detail='Selection not found.')
        if selection.class_id != class_id:
            return _uniform_result(
                CommitStatus.NOT_FOUND,
                StepStatus.SKIPPED,
                detail='Selection does not belong to this class.',
            )

        if find_payment_for_transaction(db, transaction_id) is not None:
            raise _StepFailure(current_step, CommitStatus.CONFLICT, TRANSACTION_USED_DETAIL)

        payment = Payment(
            student_email=student_email,
            class_id=class_id,
            class_name=selection.class_name,
            selected_class_id=selection.id,
            amount=selection.price,
            transaction_id=transaction_id,
        )
        db.add(payment)
        db.flush()
        payment_id = payment.id
        applied.append(current_step)

        current_step = REMOVE_SELECTION
        removed = db.query(Selection).filter(Selection.id == selection_id).delete(synchronize_session=False)
        if not removed:
            raise _StepFailure(current_step, CommitStatus.NOT_FOUND, 'Selection was already consumed.')
        applied.append(current_step)

        current_step = INCREMENT_ENROLLED
        updated = db.query(ClassOffering).filter(ClassOffering.id == class_id).update(
            {ClassOffering.enrolled: func.coalesce(ClassOffering.enrolled, 0) + 1},
            synchronize_session=False,
        )
        if not updated:
            raise _StepFailure(current_step, CommitStatus.NOT_FOUND, 'Class not found.')
        applied.append(current_step)

        current_step = DECREMENT_AVAILABLE_SEATS
        updated = db.query(ClassOffering).filter(
            ClassOffering.id == class_id,
            ClassOffering.available_seats > 0,
        ).update(
            {ClassOffering.available_seats: ClassOffering.available_seats - 1},
            synchronize_session=False,
        )
        if not updated:
            raise _StepFailure(current_step, CommitStatus.CONFLICT, SEAT_UNAVAILABLE_DETAIL)
        applied.append(current_step)

        current_step = INCREMENT_INSTRUCTOR_STUDENTS
        instructor_email = db.query(ClassOffering.instructor_email).filter(ClassOffering.id == class_id).scalar()
        if instructor_email is None:
            raise _StepFailure(current_step, CommitStatus.NOT_FOUND, 'Class not found.')
        updated = db.query(User).filter(User.email == instructor_email).update(
            {User.students: func.coalesce(User.students, 0) + 1},
            synchronize_session=False,
        )
        if not updated:
            raise _StepFailure(current_step, CommitStatus.NOT_FOUND, 'Instructor not found.')
        applied.append(current_step)

        db.commit()
    except _StepFailure as failure:
        db.rollback()
        if failure.detail == SEAT_UNAVAILABLE_DETAIL:
            logger.warning(
                'Class %s is full; payment %s for selection %s must be voided',
                class_id,
                transaction_id,
                selection_id,
            )
        else:
            logger.warning('Enrollment commit for selection %s stopped at %s: %s',
                           selection_id, failure.step, failure.detail)
        return _failed_result(applied, failure.step, failure.status, failure.detail)
    except IntegrityError:
        db.rollback()
        try:
            return _resolve_duplicate(db, student_email, class_id, selection_id, transaction_id, applied)
        except SQLAlchemyError:
            db.rollback()
            logger.exception('Enrollment commit for selection %s failed at %s', selection_id, current_step)
            return _failed_result(applied, current_step, CommitStatus.FAILED, 'Database unavailable.')
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Enrollment commit for selection %s failed at %s', selection_id, current_step)
        return _failed_result(applied, current_step, CommitStatus.FAILED, 'Database unavailable.')

    logger.info('Committed selection %s for %s into payment %s', selection_id, student_email, payment_id)
    return CommitResult(
        status=CommitStatus.COMMITTED,
        steps=[StepOutcome(step=step, status=StepStatus.APPLIED) for step in COMMIT_STEPS],
        payment_id=payment_id,
    )


def select_class(db: Session, student_email: str, class_id: int) -> Selection:
    student_email = normalize_email(student_email)

    offering = db.query(ClassOffering).filter(
        ClassOffering.id == class_id,
        ClassOffering.status == APPROVED_STATUS,
    ).first()
    if offering is None:
        raise not_found('Class not found.')
    if (offering.available_seats or 0) <= 0:
        raise conflict(SEAT_UNAVAILABLE_DETAIL)

    already_paid = db.query(Payment).filter(
        Payment.student_email == student_email,
        Payment.class_id == class_id,
    ).first()
    if already_paid:
        raise conflict('You are already enrolled in this class.')

    existing = db.query(Selection).filter(
        Selection.student_email == student_email,
        Selection.class_id == class_id,
    ).first()
    if existing:
        raise conflict('This class is already selected.')

    selection = Selection(
        student_email=student_email,
        class_id=offering.id,
        class_name=offering.name,
        price=offering.price,
    )
    db.add(selection)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise conflict('This class is already selected.') from exc
    db.refresh(selection)
    return selection


def get_owned_selection(db: Session, student_email: str, selection_id: int) -> Selection:
    selection = db.query(Selection).filter(Selection.id == selection_id).first()
    if selection is None or selection.student_email != normalize_email(student_email):
        raise not_found('Selection not found.')
    return selection


def delete_selection(db: Session, student_email: str, selection_id: int) -> None:
    selection = get_owned_selection(db, student_email, selection_id)
    db.delete(selection)
    db.commit()
