"""
Authentication Endpoints.

Endpoints Provided:
- `POST /auth/signup`: create an account with email, phone and password.
- `POST /auth/login`: log in with email or phone plus password.
- `POST /auth/federated`: sign in with a Google ID token.
- `GET /auth/verify-token`: check a bearer token and report whether the
  profile still needs completing.

All sign-in endpoints return `{"token", "isNewUser"}`. The token is a
seven-day JWT used as `Authorization: Bearer <token>` and as the `token`
query parameter of the websocket.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header

from api.dependencies import bearer_token, get_user_service
from core.logging_config import get_logger, log_function_call
from core.models import APIModel
from services.user_service import UserService

logger = get_logger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


# Request Models
class SignupRequest(APIModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(APIModel):
    # email or phone number
    email: Optional[str] = None
    password: Optional[str] = None


class FederatedLoginRequest(APIModel):
    credential: Optional[str] = None


@router.post("/signup")
@log_function_call(logger)
async def signup(
    request: SignupRequest, user_service: UserService = Depends(get_user_service)
):
    """Create an account and return an access token"""
    result = await user_service.signup(request.email, request.phone, request.password)
    return result.to_payload()


@router.post("/login")
@log_function_call(logger)
async def login(
    request: LoginRequest, user_service: UserService = Depends(get_user_service)
):
    result = await user_service.login(request.email, request.password)
    return result.to_payload()


@router.post("/federated")
@log_function_call(logger)
async def federated_login(
    request: FederatedLoginRequest,
    user_service: UserService = Depends(get_user_service),
):
    """Sign in with a Google ID token, creating the account on first use"""
    result = await user_service.federated_login(request.credential)
    return result.to_payload()


@router.get("/verify-token")
async def verify_token(
    authorization: Optional[str] = Header(None),
    user_service: UserService = Depends(get_user_service),
):
    result = await user_service.verify_token(bearer_token(authorization))
    return result.to_payload()
