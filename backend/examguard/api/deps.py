from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ..core.database import get_db
from ..core.security import oauth2_scheme
from ..services.auth_service import AuthService
from ..models.enums import UserRole
from ..models.user import User


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    auth_service = AuthService(db)
    user = auth_service.get_current_user(token)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


def get_current_active_user(
    current_user: User = Depends(get_current_user)
) -> User:
    return current_user


def get_current_student(
    current_user: User = Depends(get_current_active_user),
) -> User:
    if current_user.role != UserRole.STUDENT:
        raise HTTPException(status_code=403, detail="Only students can take exams")
    return current_user


def get_current_teacher(
    current_user: User = Depends(get_current_active_user),
) -> User:
    if current_user.role != UserRole.TEACHER and not current_user.is_superuser:
        raise HTTPException(status_code=403, detail="Teacher access required")
    return current_user


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"
