from fastapi import HTTPException, status

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'
PAYMENT_PROVIDER_UNAVAILABLE_DETAIL = 'Payment provider unavailable.'
SEAT_UNAVAILABLE_DETAIL = 'Seat no longer available.'
TRANSACTION_USED_DETAIL = 'Payment already used for another selection.'


def unauthorized(detail: str = 'Unauthorized access.') -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={'WWW-Authenticate': 'Bearer'},
    )


def forbidden(detail: str = 'Forbidden access.') -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def conflict(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def payment_provider_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=PAYMENT_PROVIDER_UNAVAILABLE_DETAIL,
    )
