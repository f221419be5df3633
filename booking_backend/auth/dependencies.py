import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from booking_backend.auth import jwt_handler
from booking_backend.database import get_db
from booking_backend.models.user import User

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if payload.get("role") and payload["role"] != user.role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token role does not match user")
    return user


def require_practitioner(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_practitioner:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only practitioners can perform this action.")
    return current_user


def require_patient(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_patient:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only patients can book appointments.")
    return current_user
