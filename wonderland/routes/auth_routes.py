from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wonderland.auth import jwt_handler
from wonderland.auth.dependencies import get_current_claims, normalize_email
from wonderland.auth.jwt_handler import IdentityClaims
from wonderland.core.errors import database_unavailable
from wonderland.database import get_db
from wonderland.models.user import User

router = APIRouter(tags=['auth'])


class TokenRequest(BaseModel):
    email: str
    name: str | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = normalize_email(value)
        if not normalized:
            raise ValueError('Email is required.')
        return normalized


class TokenResponse(BaseModel):
    token: str
    token_type: str = 'bearer'


class MeResponse(BaseModel):
    email: str
    name: str | None = None
    role: str | None = None


@router.post('/jwt', response_model=TokenResponse)
def issue_session_token(data: TokenRequest):
    token = jwt_handler.issue_token(IdentityClaims(email=data.email, name=data.name))
    return TokenResponse(token=token)


@router.get('/me', response_model=MeResponse)
def me(claims: IdentityClaims = Depends(get_current_claims), db: Session = Depends(get_db)):
    try:
        user = db.query(User).filter(User.email == normalize_email(claims.email)).first()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
    return MeResponse(email=claims.email, name=claims.name, role=user.role if user else None)
