"""
User and Profile Endpoints.

Endpoints Provided:
- `POST /users/profile`, `PUT /users/profile`, `GET /users/profile`: the
  caller's own profile. PUT is a patch: only fields present in the body are
  applied.
- `GET /users/current`: short summary of the caller.
- `GET /users/nearby`: users in the caller's location, online users first.
- `GET /users/account-details`: where to send manual payments.
- `POST /users/upload`: multipart upload of an `avatar` and/or up to five
  `images`. Returns the stored URLs; saving them on the profile is a separate
  profile update.
- `GET /users/{user_id}`: public profile with the user's posts.
- `POST /users/{user_id}/rate`: rate a user from 1 to 5.

Every endpoint requires a bearer token.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, UploadFile

from api.dependencies import (
    get_current_user,
    get_post_service,
    get_upload_service,
    get_user_service,
)
from core import config
from core.auth import AuthenticatedUser
from core.exceptions import InvalidArgumentError
from core.logging_config import get_logger, log_function_call
from core.models import APIModel, PublicProfile
from services.post_service import PostService, account_details
from services.upload_service import UploadService
from services.user_service import UserService

logger = get_logger(__name__)
router = APIRouter(prefix="/users", tags=["Users"])


# Request Models
class ProfileRequest(APIModel):
    full_name: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    location: Optional[str] = None
    role: Optional[str] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None
    images: Optional[List[str]] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class RateRequest(APIModel):
    rating: Optional[int] = None


@router.post("/upload")
@log_function_call(logger)
async def upload_images(
    avatar: Optional[UploadFile] = File(None),
    images: Optional[List[UploadFile]] = File(None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    upload_service: UploadService = Depends(get_upload_service),
):
    """Store an avatar and/or gallery images"""
    images = images or []
    if avatar is None and not images:
        raise InvalidArgumentError("upload", "", "No files uploaded")
    if len(images) > config.MAX_PROFILE_IMAGES:
        raise InvalidArgumentError(
            "images", len(images), f"At most {config.MAX_PROFILE_IMAGES} images are allowed"
        )

    response = {}
    if avatar is not None:
        response["avatarUrl"] = await upload_service.store_image(
            await avatar.read(), avatar.filename, avatar.content_type, "avatar"
        )

    image_urls = []
    for image in images:
        image_urls.append(
            await upload_service.store_image(
                await image.read(), image.filename, image.content_type, "image"
            )
        )
    if image_urls:
        response["imageUrls"] = image_urls

    logger.info(f"User {current_user.id} uploaded {len(image_urls)} image(s)")
    return response


@router.post("/profile")
@log_function_call(logger)
async def create_profile(
    request: ProfileRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    profile = await user_service.create_profile(
        current_user.id, request.model_dump(exclude_unset=True)
    )
    return profile.to_payload()


@router.put("/profile")
@log_function_call(logger)
async def update_profile(
    request: ProfileRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    profile = await user_service.update_profile(
        current_user.id, request.model_dump(exclude_unset=True)
    )
    return profile.to_payload()


@router.get("/profile")
async def get_profile(
    current_user: AuthenticatedUser = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    return (await user_service.get_profile(current_user.id)).to_payload()


@router.get("/current")
async def get_current(
    current_user: AuthenticatedUser = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    return (await user_service.get_current(current_user.id)).to_payload()


@router.get("/nearby")
async def get_nearby(
    current_user: AuthenticatedUser = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    users = await user_service.nearby(current_user.id)
    return [user.to_payload() for user in users]


@router.get("/account-details")
async def get_account_details(
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    return account_details()


@router.get("/{user_id}")
async def get_user_profile(
    user_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
    post_service: PostService = Depends(get_post_service),
):
    """Public profile of any user, with their posts"""
    profile = await user_service.get_public_profile(user_id)
    posts = await post_service.list_user_posts(user_id)
    return PublicProfile(**profile.model_dump(), posts=posts).to_payload()


@router.post("/{user_id}/rate")
@log_function_call(logger)
async def rate_user(
    user_id: str,
    request: RateRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    if request.rating is None:
        raise InvalidArgumentError("rating", None, "Rating must be between 1 and 5")
    result = await user_service.rate_user(current_user.id, user_id, request.rating)
    return result.to_payload()
