import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from wonderland.auth import jwt_handler
from wonderland.auth.jwt_handler import IdentityClaims
from wonderland.core.errors import forbidden, unauthorized
from wonderland.database import get_db
from wonderland.models.user import User

security = HTTPBearer(auto_error=False)


def normalize_email(email: str | None) -> str:
    return (email or '').strip().lower()


def get_current_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> IdentityClaims:
    if credentials is None or not credentials.credentials:
        raise unauthorized()

    try:
        claims = jwt_handler.verify_token(credentials.credentials)
    except jwt.InvalidTokenError as exc:
        raise unauthorized() from exc

    if not normalize_email(claims.email):
        raise unauthorized('Invalid token subject.')
    return claims


def has_role(user: User | None, role: str) -> bool:
    return user is not None and user.role == role


def require_role(email: str, role: str, db: Session) -> User:
    # Read on every call so role changes apply to the next request.
    user = db.query(User).filter(User.email == normalize_email(email)).first()
    if not has_role(user, role):
        raise forbidden()
    return user


def role_required(role: str):
    def dependency(
        claims: IdentityClaims = Depends(get_current_claims),
        db: Session = Depends(get_db),
    ) -> User:
        return require_role(claims.email, role, db)

    return dependency


def require_self_or_forbidden(token_email: str, requested_email: str | None) -> bool:
    """Return whether the caller is asking about their own records.

    Callers must stop on ``False`` and answer with the negative result without
    looking up ``requested_email``.
    """
    requested = normalize_email(requested_email)
    return bool(requested) and normalize_email(token_email) == requested
