"""
Two-Party Chat Service.

This module provides the `ChatService`, which owns conversations between
pairs of users and their message logs.

Key Behaviour:
- A chat is identified by its unordered participant pair. The pair is stored
  ordered (`user_a_id < user_b_id`) under a unique constraint, so at most one
  chat exists per pair no matter how many posts brought the two users
  together. Starting a chat over a post seeds a summary message; starting one
  for a pair that already has a chat without a post backfills the post.
- Messages are rows appended with an INSERT. Their order is
  `(created_at, id)`, which is also the order they were sent.
- `new-chat` and `new-message` events are pushed only after the write has
  committed.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from core import config
from core.database import session_scope
from core.exceptions import ForbiddenError, InvalidArgumentError, NotFoundError
from core.models import (
    Chat,
    ChatMessage,
    ChatMessages,
    ChatSummary,
    MessageOut,
    Post,
    ProfileSummary,
    User,
    pair_key,
)
from core.validation import InputValidator
from services.notification_service import NEW_CHAT, NEW_MESSAGE, NotificationDispatcher

logger = logging.getLogger(__name__)

CHAT_STARTED = "Chat started"


def post_summary(content: str) -> str:
    """Seed text for a chat opened over a post"""
    return f"Chat started for post: {content[:config.POST_SUMMARY_LENGTH]}..."


def message_out(message: ChatMessage, viewer_id: str) -> MessageOut:
    return MessageOut(
        id=message.id,
        text=message.text,
        is_sent=message.sender_id == viewer_id,
        created_at=message.created_at,
    )


class ChatService:
    """Service managing chats and their messages"""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher

    async def start_or_get_chat(
        self, requester_id: str, recipient_id: str, post_id: Optional[str] = None
    ) -> ChatSummary:
        """
        Return the chat between two users, creating it on first contact.

        Args:
            requester_id: The user starting the chat
            recipient_id: The other participant
            post_id: Optional post the conversation is about

        Returns:
            ChatSummary: The chat as seen by the requester; `created` tells
            whether this call created it
        """
        InputValidator.validate_identifier(requester_id, "userId")
        InputValidator.validate_identifier(recipient_id, "recipient")
        if post_id is not None:
            InputValidator.validate_identifier(post_id, "postId")

        if requester_id == recipient_id:
            raise InvalidArgumentError(
                "recipient", recipient_id, "Cannot start a chat with yourself"
            )

        chat, created = await self.ensure_chat(requester_id, recipient_id, post_id)

        async with session_scope("load_chat") as session:
            users = await self._load_users(session, chat.participants)

        if created:
            await self.notify_new_chat(chat, users)

        return self._summary(chat, requester_id, users, created=created)

    async def ensure_chat(
        self, initiator_id: str, other_id: str, post_id: Optional[str] = None
    ) -> Tuple[Chat, bool]:
        """
        Find or create the chat for a pair of users.

        Returns the chat and whether it was created. Raises NotFoundError when
        a user or the supplied post does not exist.
        """
        async with session_scope("start_chat") as session:
            for user_id in (initiator_id, other_id):
                if await session.get(User, user_id) is None:
                    raise NotFoundError("User", user_id)

            summary = None
            if post_id is not None:
                post = await session.get(Post, post_id)
                if post is None:
                    raise NotFoundError("Post", post_id)
                summary = post_summary(post.content)

            chat = await self._find_chat(session, initiator_id, other_id)
            if chat is None:
                chat = await self._create_chat(
                    session, initiator_id, other_id, post_id, summary
                )
                if chat is not None:
                    return chat, True
                # Lost the race to a concurrent create, use the winner
                chat = await self._find_chat(session, initiator_id, other_id)

            if post_id is not None and chat.post_id is None:
                chat.post_id = post_id
                chat.last_message = summary
                chat.updated_at = datetime.utcnow()
                session.add(chat)
                await session.commit()
                logger.info(f"Linked chat {chat.id} to post {post_id}")

            return chat, False

    async def notify_new_chat(
        self, chat: Chat, users: Dict[str, User] = None, created: bool = True
    ):
        """Push `new-chat` to both participants, each from their own side"""
        if users is None:
            async with session_scope("load_chat") as session:
                users = await self._load_users(session, chat.participants)

        for user_id in chat.participants:
            summary = self._summary(chat, user_id, users, created=created)
            await self.dispatcher.emit_to_user(user_id, NEW_CHAT, summary.to_payload())

    async def list_chats(self, user_id: str) -> List[ChatSummary]:
        """All chats of a user, one per counterparty, most recently active first"""
        async with session_scope("list_chats") as session:
            result = await session.exec(
                select(Chat)
                .where(or_(Chat.user_a_id == user_id, Chat.user_b_id == user_id))
                .order_by(col(Chat.updated_at).desc())
            )
            chats = result.all()
            users = await self._load_users(
                session, {chat.counterparty(user_id) for chat in chats}
            )

        latest: Dict[str, Chat] = {}
        for chat in chats:
            other_id = chat.counterparty(user_id)
            if other_id not in users:
                continue
            current = latest.get(other_id)
            if current is None or current.updated_at < chat.updated_at:
                latest[other_id] = chat

        summaries = [self._summary(chat, user_id, users) for chat in latest.values()]
        summaries.sort(key=lambda summary: summary.updated_at, reverse=True)
        return summaries

    async def get_chat(self, chat_id: str, requester_id: str) -> ChatSummary:
        async with session_scope("get_chat") as session:
            chat = await self._participant_chat(session, chat_id, requester_id)
            users = await self._load_users(session, chat.participants)

        return self._summary(chat, requester_id, users)

    async def get_messages(self, chat_id: str, requester_id: str) -> ChatMessages:
        """Full message log in send order, flagged relative to the requester"""
        async with session_scope("get_messages") as session:
            chat = await self._participant_chat(session, chat_id, requester_id)
            users = await self._load_users(session, chat.participants)
            result = await session.exec(
                select(ChatMessage)
                .where(ChatMessage.chat_id == chat.id)
                .order_by(col(ChatMessage.created_at), col(ChatMessage.id))
            )
            messages = result.all()

        return ChatMessages(
            chat_id=chat.id,
            messages=[message_out(message, requester_id) for message in messages],
            recipient=ProfileSummary.from_user(users[chat.counterparty(requester_id)]),
            post_id=chat.post_id,
        )

    async def send_message(self, chat_id: str, sender_id: str, text: str) -> MessageOut:
        """
        Append a message and push it to the other participant.

        Returns:
            MessageOut: The stored message with `isSent` set
        """
        text = InputValidator.sanitize_string(
            text, "text", max_length=config.MESSAGE_MAX_LENGTH, min_length=1
        )

        async with session_scope("send_message") as session:
            chat = await self._participant_chat(session, chat_id, sender_id)

            now = datetime.utcnow()
            message = ChatMessage(
                chat_id=chat.id, sender_id=sender_id, text=text, created_at=now
            )
            chat.last_message = text
            chat.updated_at = now
            session.add(message)
            session.add(chat)
            await session.commit()

        recipient_id = chat.counterparty(sender_id)
        await self.dispatcher.emit_to_user(
            recipient_id,
            NEW_MESSAGE,
            {
                "chatId": chat.id,
                "message": message_out(message, recipient_id).to_payload(),
            },
        )

        logger.debug(f"Message {message.id} sent in chat {chat.id}")
        return message_out(message, sender_id)

    async def _find_chat(self, session, user_a: str, user_b: str) -> Optional[Chat]:
        low, high = pair_key(user_a, user_b)
        result = await session.exec(
            select(Chat).where(Chat.user_a_id == low, Chat.user_b_id == high)
        )
        return result.first()

    async def _create_chat(
        self,
        session,
        initiator_id: str,
        other_id: str,
        post_id: Optional[str],
        summary: Optional[str],
    ) -> Optional[Chat]:
        low, high = pair_key(initiator_id, other_id)
        now = datetime.utcnow()
        chat = Chat(
            user_a_id=low,
            user_b_id=high,
            post_id=post_id,
            last_message=summary or CHAT_STARTED,
            created_at=now,
            updated_at=now,
        )

        try:
            session.add(chat)
            await session.flush()
            if summary is not None:
                session.add(
                    ChatMessage(
                        chat_id=chat.id,
                        sender_id=initiator_id,
                        text=summary,
                        created_at=now,
                    )
                )
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.info(f"Chat for pair {low}/{high} created concurrently")
            return None

        logger.info(
            f"Created chat {chat.id}",
            extra={"chat_id": chat.id, "post_id": post_id},
        )
        return chat

    async def _participant_chat(self, session, chat_id: str, user_id: str) -> Chat:
        InputValidator.validate_identifier(chat_id, "chatId")

        chat = await session.get(Chat, chat_id)
        if chat is None:
            raise NotFoundError("Chat", chat_id)
        if not chat.has_participant(user_id):
            raise ForbiddenError("You are not a participant in this chat", "chat")
        return chat

    async def _load_users(self, session, user_ids: Iterable[str]) -> Dict[str, User]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        result = await session.exec(select(User).where(col(User.id).in_(ids)))
        return {user.id: user for user in result.all()}

    def _summary(
        self, chat: Chat, viewer_id: str, users: Dict[str, User], created: bool = False
    ) -> ChatSummary:
        return ChatSummary(
            id=chat.id,
            recipient=ProfileSummary.from_user(users[chat.counterparty(viewer_id)]),
            last_message=chat.last_message,
            updated_at=chat.updated_at,
            post_id=chat.post_id,
            created=created,
        )
