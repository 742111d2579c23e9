from typing import Optional

from fastapi import Header

from core.auth import AuthenticatedUser, get_jwt_manager, init_jwt_manager
from core.exceptions import AuthenticationError
from core.logging_config import set_user_id
from providers.blob_store import LocalBlobStore
from providers.identity_provider import GoogleIdentityProvider
from services.chat_service import ChatService
from services.notification_service import NotificationDispatcher
from services.payment_service import PaymentService
from services.post_service import PostService
from services.presence_service import PresenceTracker
from services.upload_service import UploadService
from services.user_service import UserService

presence_tracker: PresenceTracker = None
notification_dispatcher: NotificationDispatcher = None
user_service: UserService = None
chat_service: ChatService = None
payment_service: PaymentService = None
post_service: PostService = None
upload_service: UploadService = None


def init_services():
    """Build the service singletons. Called once per application startup."""
    global presence_tracker, notification_dispatcher, user_service
    global chat_service, payment_service, post_service, upload_service

    jwt_manager = init_jwt_manager()
    user_service = UserService(jwt_manager, GoogleIdentityProvider())
    presence_tracker = PresenceTracker(status_store=user_service.set_online)
    notification_dispatcher = NotificationDispatcher(presence_tracker)
    chat_service = ChatService(notification_dispatcher)
    payment_service = PaymentService()
    post_service = PostService(chat_service, payment_service, notification_dispatcher)
    upload_service = UploadService(LocalBlobStore())


def get_presence_tracker() -> PresenceTracker:
    return presence_tracker


def get_user_service() -> UserService:
    return user_service


def get_chat_service() -> ChatService:
    return chat_service


def get_payment_service() -> PaymentService:
    return payment_service


def get_post_service() -> PostService:
    return post_service


def get_upload_service() -> UploadService:
    return upload_service


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("No token provided")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authorization header must be 'Bearer <token>'")
    return token.strip()


async def get_current_user(
    authorization: Optional[str] = Header(None),
) -> AuthenticatedUser:
    """Identity of the caller from the `Authorization: Bearer` header"""
    user = get_jwt_manager().authenticate(bearer_token(authorization))
    set_user_id(user.id)
    return user
