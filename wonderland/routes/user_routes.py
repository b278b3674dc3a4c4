from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wonderland.auth import accounts
from wonderland.auth.dependencies import (
    get_current_claims,
    has_role,
    normalize_email,
    require_self_or_forbidden,
    role_required,
)
from wonderland.auth.jwt_handler import IdentityClaims
from wonderland.core.errors import database_unavailable
from wonderland.database import get_db
from wonderland.models.user import ADMIN_ROLE, INSTRUCTOR_ROLE, STUDENT_ROLE, USER_ROLES, User

router = APIRouter(tags=['users'])

POPULAR_INSTRUCTORS_LIMIT = 6


class CreateUserRequest(BaseModel):
    email: str
    name: str | None = None
    photo_url: str | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = normalize_email(value)
        if not normalized:
            raise ValueError('Email is required.')
        return normalized


class UpdateRoleRequest(BaseModel):
    role: str

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in USER_ROLES:
            raise ValueError('Invalid role.')
        return normalized


class UserResponse(BaseModel):
    id: int
    email: str
    name: str | None = None
    photo_url: str | None = None
    role: str
    students: int | None = None

    class Config:
        from_attributes = True


class CreateUserResponse(BaseModel):
    created: bool
    message: str
    user: UserResponse


def check_own_role(claims: IdentityClaims, email: str, role: str, db: Session) -> bool:
    if not require_self_or_forbidden(claims.email, email):
        return False

    try:
        user = db.query(User).filter(User.email == normalize_email(email)).first()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
    return has_role(user, role)


@router.post('', response_model=CreateUserResponse)
def add_user(data: CreateUserRequest, db: Session = Depends(get_db)):
    try:
        user, created = accounts.register_user(db, data.email, name=data.name, photo_url=data.photo_url)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    message = 'user created' if created else 'user already exists'
    return CreateUserResponse(created=created, message=message, user=UserResponse.model_validate(user))


@router.get('', response_model=list[UserResponse])
def list_users(
    _admin: User = Depends(role_required(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    try:
        return db.query(User).order_by(User.id.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.patch('/{email}/role', response_model=UserResponse)
def update_user_role(
    email: str,
    data: UpdateRoleRequest,
    _admin: User = Depends(role_required(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    try:
        return accounts.set_user_role(db, email, data.role)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/instructors', response_model=list[UserResponse])
def list_instructors(db: Session = Depends(get_db)):
    try:
        return db.query(User).filter(User.role == INSTRUCTOR_ROLE).order_by(User.id.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/instructors/popular', response_model=list[UserResponse])
def list_popular_instructors(db: Session = Depends(get_db)):
    try:
        return db.query(User).filter(User.role == INSTRUCTOR_ROLE).order_by(
            User.students.desc().nulls_last(),
            User.id.asc(),
        ).limit(POPULAR_INSTRUCTORS_LIMIT).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/is-student/{email}')
def is_student(
    email: str,
    claims: IdentityClaims = Depends(get_current_claims),
    db: Session = Depends(get_db),
):
    return {'student': check_own_role(claims, email, STUDENT_ROLE, db)}


@router.get('/is-instructor/{email}')
def is_instructor(
    email: str,
    claims: IdentityClaims = Depends(get_current_claims),
    db: Session = Depends(get_db),
):
    return {'instructor': check_own_role(claims, email, INSTRUCTOR_ROLE, db)}


@router.get('/is-admin/{email}')
def is_admin(
    email: str,
    claims: IdentityClaims = Depends(get_current_claims),
    db: Session = Depends(get_db),
):
    return {'admin': check_own_role(claims, email, ADMIN_ROLE, db)}
