"""
Chat Endpoints.

Endpoints Provided:
- `POST /chats`: start (or reopen) the chat with `recipient`, optionally about
  `postId`.
- `GET /chats`: the caller's chats, most recent first.
- `GET /chats/{chat_id}`: one chat.
- `GET /chats/{chat_id}/messages`: message log, each flagged `isSent`.
- `POST /chats/{chat_id}/messages`: send a message. The other participant
  receives a `new-message` push if connected.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from api.dependencies import get_chat_service, get_current_user
from core.auth import AuthenticatedUser
from core.logging_config import get_logger, log_function_call
from core.models import APIModel
from services.chat_service import ChatService

logger = get_logger(__name__)
router = APIRouter(prefix="/chats", tags=["Chats"])


# Request Models
class StartChatRequest(APIModel):
    recipient: Optional[str] = None
    post_id: Optional[str] = None


class SendMessageRequest(APIModel):
    text: Optional[str] = None


@router.post("")
@log_function_call(logger)
async def start_chat(
    request: StartChatRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service),
):
    chat = await chat_service.start_or_get_chat(
        current_user.id, request.recipient, request.post_id
    )
    return chat.to_payload()


@router.get("")
async def list_chats(
    current_user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service),
):
    chats = await chat_service.list_chats(current_user.id)
    return [chat.to_payload() for chat in chats]


@router.get("/{chat_id}")
async def get_chat(
    chat_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service),
):
    return (await chat_service.get_chat(chat_id, current_user.id)).to_payload()


@router.get("/{chat_id}/messages")
async def get_messages(
    chat_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service),
):
    return (await chat_service.get_messages(chat_id, current_user.id)).to_payload()


@router.post("/{chat_id}/messages")
@log_function_call(logger)
async def send_message(
    chat_id: str,
    request: SendMessageRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service),
):
    message = await chat_service.send_message(chat_id, current_user.id, request.text)
    return message.to_payload()
