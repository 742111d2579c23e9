"""
Post Endpoints.

Endpoints Provided:
- `GET /posts`: active, unexpired posts (public).
- `POST /posts`: multipart post creation with optional `image` and
  `paymentProof` files.
- `POST /posts/extend`: owner gives an active post a new duration.
- `GET /posts/user/{user_id}`: all posts of a user (public).
- `POST /posts/accept`: accept a post. Past the acceptance quota the response
  is a 403 `PAYMENT_REQUIRED` error whose details carry
  `requiresPayment` and `accountDetails`.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from api.dependencies import get_current_user, get_post_service, get_upload_service
from core.auth import AuthenticatedUser
from core.logging_config import get_logger, log_function_call
from core.models import APIModel
from services.post_service import PostService
from services.upload_service import UploadService

logger = get_logger(__name__)
router = APIRouter(prefix="/posts", tags=["Posts"])


# Request Models
class ExtendPostRequest(APIModel):
    post_id: Optional[str] = None
    post_type: Optional[str] = None


class AcceptPostRequest(APIModel):
    post_id: Optional[str] = None
    payment_id: Optional[str] = None


@router.get("")
async def list_posts(post_service: PostService = Depends(get_post_service)):
    posts = await post_service.list_active_posts()
    return [post.to_payload() for post in posts]


@router.post("")
@log_function_call(logger)
async def create_post(
    content: str = Form(""),
    postType: str = Form("quick"),
    sponsored: bool = Form(False),
    image: Optional[UploadFile] = File(None),
    paymentProof: Optional[UploadFile] = File(None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    post_service: PostService = Depends(get_post_service),
    upload_service: UploadService = Depends(get_upload_service),
):
    """Create a post, storing its image and payment proof first"""
    image_url = None
    if image is not None:
        image_url = await upload_service.store_image(
            await image.read(), image.filename, image.content_type, "post"
        )

    proof_url = None
    if paymentProof is not None:
        proof_url = await upload_service.store_image(
            await paymentProof.read(),
            paymentProof.filename,
            paymentProof.content_type,
            "proof",
        )

    post = await post_service.create_post(
        current_user.id,
        content,
        postType,
        sponsored=sponsored,
        image_url=image_url,
        payment_proof_url=proof_url,
    )
    return {"message": "Post created", "post": post.to_payload()}


@router.post("/extend")
@log_function_call(logger)
async def extend_post(
    request: ExtendPostRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    post_service: PostService = Depends(get_post_service),
):
    post = await post_service.extend_post(
        request.post_id, current_user.id, request.post_type
    )
    return {"message": "Post extended", "post": post.to_payload()}


@router.get("/user/{user_id}")
async def list_user_posts(
    user_id: str, post_service: PostService = Depends(get_post_service)
):
    posts = await post_service.list_user_posts(user_id)
    return [post.to_payload() for post in posts]


@router.post("/accept")
@log_function_call(logger)
async def accept_post(
    request: AcceptPostRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    post_service: PostService = Depends(get_post_service),
):
    result = await post_service.accept_request(
        request.post_id, current_user.id, request.payment_id
    )
    return result.to_payload()
