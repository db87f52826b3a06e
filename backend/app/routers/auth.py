"""Auth endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from ..auth import authenticate_user, create_access_token, get_current_user
from ..config import settings
from ..database import get_db
from ..models import User
from ..schemas import ApiResponse, LoginRequest, TokenResponse, UserResponse

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _set_no_store(response: Response) -> None:
    # Keep tokens out of intermediary caches.
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"


@router.post("/login", response_model=ApiResponse[TokenResponse])
def login(payload: LoginRequest, response: Response, db: Session = Depends(get_db)):
    """Login with email and password."""
    _set_no_store(response)
    user = authenticate_user(db, email=payload.email, password=payload.password)
    if user is None:
        logger.info("Failed login for %s", payload.email.strip().lower())
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token({"sub": user.id, "role": user.role})
    return ApiResponse(
        message="Login successful",
        data=TokenResponse(
            access_token=access_token,
            expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            user=UserResponse.model_validate(user),
        ),
    )


@router.get("/me", response_model=ApiResponse[UserResponse])
def get_me(response: Response, current_user: User = Depends(get_current_user)):
    _set_no_store(response)
    return ApiResponse(data=UserResponse.model_validate(current_user))
