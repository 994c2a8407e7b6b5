from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ....core.database import get_db
from ....api.deps import get_current_active_user
from ....models.user import User as UserModel
from ....schemas.user import User, UserUpdate
from ....services.user_service import UserService

router = APIRouter()


@router.get("/me", response_model=User)
def read_users_me(
    current_user: UserModel = Depends(get_current_active_user)
):
    return current_user


@router.patch("/me", response_model=User)
def update_users_me(
    user_data: UserUpdate,
    current_user: UserModel = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    try:
        return UserService(db).update_user(current_user, user_data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
