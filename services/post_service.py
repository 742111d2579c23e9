"""
Post Lifecycle and Acceptance Service.

This module provides the `PostService`, which creates, extends and lists
posts and runs the acceptance workflow.

Post states:
- `active` -> `accepted` on the first acceptance by someone other than the
  owner.
- `active` -> `expired` once `expires_at` has passed. `expire_due_posts` is
  run periodically by a background task; an active post whose expiry has
  passed but has not been swept yet is treated as expired as well.

Acceptance quota:
- Every user may hold `ACCEPTANCE_QUOTA` acceptances across all posts. Past
  that, accepting requires a verified `unlock_acceptances` payment, otherwise
  `PaymentRequiredError` is raised with the bank details and a fresh
  reference to pay with.
- The quota check and the insert are not serialized, so concurrent accepts
  from one user may overshoot the quota slightly. The same user can never
  accept the same post twice: `acceptances` is unique on (post, user) and a
  concurrent duplicate is dropped silently.
- The accepter and the owner are connected through the pair-keyed chat of
  `ChatService`; accepting over a second post reuses their existing thread.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import col, func, select

from core import config
from core.database import session_scope
from core.exceptions import (
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    PaymentRequiredError,
)
from core.models import (
    Acceptance,
    AcceptanceOut,
    AcceptResult,
    Post,
    PostOut,
    PostStatus,
    PostType,
    ProfileSummary,
    User,
)
from core.validation import InputValidator
from services.chat_service import ChatService
from services.notification_service import POST_ACCEPTED, NotificationDispatcher
from services.payment_service import PaymentService

logger = logging.getLogger(__name__)


def parse_post_type(value) -> PostType:
    if isinstance(value, PostType):
        return value
    try:
        return PostType(value)
    except ValueError:
        raise InvalidArgumentError(
            "postType",
            value,
            f"postType must be one of: {', '.join(t.value for t in PostType)}",
        )


def account_details() -> Dict[str, str]:
    """Where to send an unlock payment, with a fresh reference"""
    return {
        "bank": config.BANK_NAME,
        "accountNumber": config.ACCOUNT_NUMBER,
        "accountName": config.ACCOUNT_NAME,
        "reference": f"ACCEPT-{int(time.time() * 1000)}",
    }


class PostService:
    """Service for posts and the acceptance workflow"""

    def __init__(
        self,
        chat_service: ChatService,
        payment_service: PaymentService,
        dispatcher: NotificationDispatcher,
    ):
        self.chat_service = chat_service
        self.payment_service = payment_service
        self.dispatcher = dispatcher

    async def list_active_posts(self) -> List[PostOut]:
        """Active, unexpired posts, newest first"""
        now = datetime.utcnow()
        async with session_scope("list_posts") as session:
            result = await session.exec(
                select(Post)
                .where(Post.status == PostStatus.ACTIVE, Post.expires_at > now)
                .order_by(col(Post.created_at).desc())
            )
            return await self._post_outs(session, result.all())

    async def list_user_posts(self, user_id: str) -> List[PostOut]:
        InputValidator.validate_identifier(user_id, "userId")

        async with session_scope("list_user_posts") as session:
            result = await session.exec(
                select(Post)
                .where(Post.owner_id == user_id)
                .order_by(col(Post.created_at).desc())
            )
            return await self._post_outs(session, result.all())

    async def create_post(
        self,
        owner_id: str,
        content: str,
        post_type="quick",
        sponsored: bool = False,
        image_url: Optional[str] = None,
        payment_proof_url: Optional[str] = None,
    ) -> PostOut:
        """
        Create an active post.

        Args:
            owner_id: Author of the post
            content: Post text, trimmed, 1 to POST_CONTENT_MAX_LENGTH characters
            post_type: `quick` (1 day), `extended-7` or `extended-30`
            sponsored: Whether the post is promoted
            image_url: Optional uploaded image
            payment_proof_url: Optional proof of payment for an extended post
        """
        content = InputValidator.sanitize_string(
            content, "content", max_length=config.POST_CONTENT_MAX_LENGTH, min_length=1
        )
        post_type = parse_post_type(post_type)

        now = datetime.utcnow()
        async with session_scope("create_post") as session:
            if await session.get(User, owner_id) is None:
                raise NotFoundError("User", owner_id)

            post = Post(
                owner_id=owner_id,
                content=content,
                post_type=post_type,
                duration_days=post_type.duration_days,
                expires_at=now + timedelta(days=post_type.duration_days),
                sponsored=bool(sponsored),
                image_url=image_url,
                payment_proof_url=payment_proof_url,
                created_at=now,
            )
            session.add(post)
            await session.commit()

            logger.info(
                f"Post {post.id} created by user {owner_id}",
                extra={"post_id": post.id, "post_type": post_type.value},
            )
            return (await self._post_outs(session, [post]))[0]

    async def extend_post(self, post_id: str, requester_id: str, post_type) -> PostOut:
        """Give an active post a new duration counted from now"""
        InputValidator.validate_identifier(post_id, "postId")
        post_type = parse_post_type(post_type)

        async with session_scope("extend_post") as session:
            post = await session.get(Post, post_id)
            if post is None:
                raise NotFoundError("Post", post_id)
            if post.owner_id != requester_id:
                raise ForbiddenError("Only the owner can extend a post", "post")
            self._require_available(post)

            post.post_type = post_type
            post.duration_days = post_type.duration_days
            post.expires_at = datetime.utcnow() + timedelta(days=post_type.duration_days)
            session.add(post)
            await session.commit()

            logger.info(f"Post {post_id} extended to {post_type.value}")
            return (await self._post_outs(session, [post]))[0]

    async def count_acceptances(self, session, user_id: str) -> int:
        result = await session.exec(
            select(func.count()).select_from(Acceptance).where(Acceptance.user_id == user_id)
        )
        return result.one()

    async def accept_request(
        self, post_id: str, accepter_id: str, payment_id: Optional[str] = None
    ) -> AcceptResult:
        """
        Accept a post on behalf of `accepter_id`.

        Accepting a post the user already accepted returns the same result
        again without recording anything or pushing events.

        Raises:
            InvalidArgumentError: Malformed ids, own post, bad payment
            NotFoundError: Unknown post
            InvalidStateError: Post is not active or has expired
            PaymentRequiredError: Quota used up and no payment supplied
            PaymentPendingError: Supplied payment not verified yet
        """
        InputValidator.validate_identifier(post_id, "postId")
        if payment_id is not None:
            InputValidator.validate_identifier(payment_id, "paymentId")

        async with session_scope("accept_request") as session:
            post = await session.get(Post, post_id)
            if post is None:
                raise NotFoundError("Post", post_id)

            owner_id = post.owner_id
            if owner_id == accepter_id:
                raise InvalidArgumentError("postId", post_id, "You cannot accept your own post")

            existing = await session.exec(
                select(Acceptance).where(
                    Acceptance.post_id == post_id, Acceptance.user_id == accepter_id
                )
            )
            recorded = False
            if existing.first() is None:
                self._require_available(post)

                total = await self.count_acceptances(session, accepter_id)
                if total >= config.ACCEPTANCE_QUOTA and payment_id is None:
                    logger.info(
                        f"User {accepter_id} reached the acceptance quota",
                        extra={"user_id": accepter_id, "acceptances": total},
                    )
                    raise PaymentRequiredError(config.ACCEPTANCE_QUOTA, account_details())
                if payment_id is not None:
                    await self.payment_service.resolve_unlock_payment(payment_id, accepter_id)

                session.add(Acceptance(post_id=post_id, user_id=accepter_id))
                post.status = PostStatus.ACCEPTED
                session.add(post)
                try:
                    await session.commit()
                    recorded = True
                except IntegrityError:
                    await session.rollback()
                    logger.info(f"Duplicate acceptance of post {post_id} by {accepter_id} dropped")

        chat, chat_created = await self.chat_service.ensure_chat(accepter_id, owner_id, post_id)

        if recorded:
            logger.info(
                f"Post {post_id} accepted by user {accepter_id}",
                extra={"post_id": post_id, "chat_id": chat.id},
            )
            await self.chat_service.notify_new_chat(chat, created=chat_created)
            await self.dispatcher.broadcast(POST_ACCEPTED, {"postId": post_id})

        async with session_scope("load_post") as session:
            post = await session.get(Post, post_id)
            post_out = (await self._post_outs(session, [post]))[0]

        return AcceptResult(post=post_out, chat_id=chat.id)

    async def expire_due_posts(self) -> int:
        """Mark every active post past its expiry as expired"""
        now = datetime.utcnow()
        async with session_scope("expire_posts") as session:
            result = await session.exec(
                select(Post).where(Post.status == PostStatus.ACTIVE, Post.expires_at <= now)
            )
            posts = result.all()
            for post in posts:
                post.status = PostStatus.EXPIRED
                session.add(post)
            if posts:
                await session.commit()

        if posts:
            logger.info(f"Expired {len(posts)} post(s)")
        return len(posts)

    async def run_expiry_sweep(self, interval_seconds: float):
        """Background loop calling `expire_due_posts` until cancelled"""
        while True:
            try:
                await self.expire_due_posts()
            except Exception as e:
                logger.error(f"Post expiry sweep failed: {e}")
            await asyncio.sleep(interval_seconds)

    def _require_available(self, post: Post):
        if post.status != PostStatus.ACTIVE:
            raise InvalidStateError(
                "Post", post.id, post.status.value, "Post not available"
            )
        if post.expires_at <= datetime.utcnow():
            raise InvalidStateError("Post", post.id, "expired", "Post has expired")

    async def _post_outs(self, session, posts: Iterable[Post]) -> List[PostOut]:
        posts = list(posts)
        if not posts:
            return []

        owner_ids = list({post.owner_id for post in posts})
        owners = await session.exec(select(User).where(col(User.id).in_(owner_ids)))
        owners_by_id = {user.id: user for user in owners.all()}

        acceptances = await session.exec(
            select(Acceptance)
            .where(col(Acceptance.post_id).in_([post.id for post in posts]))
            .order_by(col(Acceptance.accepted_at), col(Acceptance.id))
        )
        by_post: Dict[str, List[AcceptanceOut]] = {}
        for acceptance in acceptances.all():
            by_post.setdefault(acceptance.post_id, []).append(
                AcceptanceOut(user_id=acceptance.user_id, accepted_at=acceptance.accepted_at)
            )

        return [
            PostOut(
                id=post.id,
                owner=ProfileSummary.from_user(owners_by_id[post.owner_id]),
                content=post.content,
                post_type=post.post_type,
                duration_days=post.duration_days,
                expires_at=post.expires_at,
                status=post.status,
                sponsored=post.sponsored,
                image_url=post.image_url,
                acceptances=by_post.get(post.id, []),
                created_at=post.created_at,
            )
            for post in posts
        ]
