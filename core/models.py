"""
Core data models for the Coded Signal API

Defines the SQLModel tables (users, posts, acceptances, chats, messages,
payments, ratings) and the Pydantic models returned by the API and pushed over
the realtime channel.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import SQLModel, Field


def new_id() -> str:
    return uuid.uuid4().hex


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class ProfileRole(str, Enum):
    FRIENDS = "friends"
    DATES = "dates"
    COMPANIONS = "companions"
    NETWORKING = "networking"


class PostType(str, Enum):
    QUICK = "quick"
    EXTENDED_7 = "extended-7"
    EXTENDED_30 = "extended-30"

    @property
    def duration_days(self) -> int:
        return POST_DURATIONS[self]


POST_DURATIONS = {
    PostType.QUICK: 1,
    PostType.EXTENDED_7: 7,
    PostType.EXTENDED_30: 30,
}


class PostStatus(str, Enum):
    ACTIVE = "active"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class PaymentPurpose(str, Enum):
    POST_CREATION = "post_creation"
    POST_EXTENSION = "post_extension"
    UNLOCK_ACCEPTANCES = "unlock_acceptances"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


# Tables


class User(SQLModel, table=True):
    """
    A member account. At least one of email, phone or google_id is set;
    each of them is unique when present.
    """

    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    email: Optional[str] = Field(default=None, unique=True, index=True, max_length=254)
    phone: Optional[str] = Field(default=None, unique=True, index=True, max_length=32)
    google_id: Optional[str] = Field(
        default=None, unique=True, index=True, max_length=255
    )
    password_hash: Optional[str] = Field(default=None, max_length=255)
    full_name: Optional[str] = Field(default=None, max_length=100)
    age: Optional[int] = Field(default=None)
    gender: Optional[Gender] = Field(default=None)
    location: Optional[str] = Field(default=None, max_length=120)
    role: Optional[ProfileRole] = Field(default=None)
    bio: Optional[str] = Field(default=None, max_length=300)
    avatar: Optional[str] = Field(default=None, max_length=1024)
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    connections: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    verified: bool = Field(default=False)
    is_online: bool = Field(default=False)
    is_admin: bool = Field(default=False)
    rating_average: float = Field(default=0.0)
    rating_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class UserRating(SQLModel, table=True):
    __tablename__ = "user_ratings"
    __table_args__ = (UniqueConstraint("rater_id", "rated_id", name="uq_rating_pair"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    rater_id: str = Field(foreign_key="users.id", index=True)
    rated_id: str = Field(foreign_key="users.id", index=True)
    value: int
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Post(SQLModel, table=True):
    __tablename__ = "posts"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    owner_id: str = Field(foreign_key="users.id", index=True)
    content: str = Field(max_length=500)
    post_type: PostType = Field(default=PostType.QUICK)
    duration_days: int = Field(default=1)
    expires_at: datetime = Field(index=True)
    status: PostStatus = Field(default=PostStatus.ACTIVE, index=True)
    sponsored: bool = Field(default=False)
    image_url: Optional[str] = Field(default=None, max_length=1024)
    payment_proof_url: Optional[str] = Field(default=None, max_length=1024)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Acceptance(SQLModel, table=True):
    """One user accepting one post. A user accepts a given post at most once."""

    __tablename__ = "acceptances"
    __table_args__ = (UniqueConstraint("post_id", "user_id", name="uq_acceptance"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    post_id: str = Field(foreign_key="posts.id", index=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    accepted_at: datetime = Field(default_factory=datetime.utcnow)


class Chat(SQLModel, table=True):
    """
    Two-party conversation. The participants are stored as an ordered pair
    (user_a_id < user_b_id) so the unordered pair is unique.
    """

    __tablename__ = "chats"
    __table_args__ = (UniqueConstraint("user_a_id", "user_b_id", name="uq_chat_pair"),)

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    user_a_id: str = Field(foreign_key="users.id", index=True)
    user_b_id: str = Field(foreign_key="users.id", index=True)
    post_id: Optional[str] = Field(default=None, foreign_key="posts.id")
    last_message: str = Field(default="")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, index=True)

    @property
    def participants(self) -> tuple:
        return (self.user_a_id, self.user_b_id)

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def counterparty(self, user_id: str) -> str:
        return self.user_b_id if user_id == self.user_a_id else self.user_a_id


class ChatMessage(SQLModel, table=True):
    __tablename__ = "chat_messages"

    # Auto-increment id doubles as the append sequence within a chat
    id: Optional[int] = Field(default=None, primary_key=True)
    chat_id: str = Field(foreign_key="chats.id", index=True)
    sender_id: str = Field(foreign_key="users.id")
    text: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Payment(SQLModel, table=True):
    __tablename__ = "payments"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    user_id: str = Field(foreign_key="users.id", index=True)
    post_id: Optional[str] = Field(default=None, foreign_key="posts.id")
    purpose: PaymentPurpose
    proof_url: str = Field(max_length=1024)
    status: PaymentStatus = Field(default=PaymentStatus.PENDING, index=True)
    amount: float = Field(default=0.0)
    reference: str = Field(max_length=64)
    created_at: datetime = Field(default_factory=datetime.utcnow)


def pair_key(user_a: str, user_b: str) -> tuple:
    """Canonical (low, high) ordering of a participant pair"""
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


# API / push-channel models


class APIModel(BaseModel):
    """Base for response models: camelCase on the wire"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class ProfileSummary(APIModel):
    id: str
    name: Optional[str] = None
    avatar: Optional[str] = None
    is_online: bool = False

    @classmethod
    def from_user(cls, user: User) -> "ProfileSummary":
        return cls(
            id=user.id,
            name=user.full_name,
            avatar=user.avatar,
            is_online=user.is_online,
        )


class UserProfileOut(APIModel):
    id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    full_name: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[Gender] = None
    location: Optional[str] = None
    role: Optional[ProfileRole] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None
    images: List[str] = []
    verified: bool = False
    is_online: bool = False
    connections: int = 0
    rating: float = 0.0
    rating_count: int = 0
    created_at: datetime

    @classmethod
    def from_user(cls, user: User, include_contact: bool = True) -> "UserProfileOut":
        return cls(
            id=user.id,
            email=user.email if include_contact else None,
            phone=user.phone if include_contact else None,
            full_name=user.full_name,
            age=user.age,
            gender=user.gender,
            location=user.location,
            role=user.role,
            bio=user.bio,
            avatar=user.avatar,
            images=list(user.images or []),
            verified=user.verified,
            is_online=user.is_online,
            connections=len(user.connections or []),
            rating=user.rating_average,
            rating_count=user.rating_count,
            created_at=user.created_at,
        )


class AuthToken(APIModel):
    token: str
    is_new_user: bool = False


class TokenStatus(APIModel):
    valid: bool
    is_new_user: bool
    user_id: str


class RatingResult(APIModel):
    message: str = "Rating submitted successfully"
    average_rating: float
    rating_count: int


class AcceptanceOut(APIModel):
    user_id: str
    accepted_at: datetime


class PostOut(APIModel):
    id: str
    owner: ProfileSummary
    content: str
    post_type: PostType
    duration_days: int
    expires_at: datetime
    status: PostStatus
    sponsored: bool = False
    image_url: Optional[str] = None
    acceptances: List[AcceptanceOut] = []
    created_at: datetime


class PublicProfile(UserProfileOut):
    posts: List[PostOut] = []


class MessageOut(APIModel):
    id: int
    text: str
    is_sent: bool
    created_at: datetime


class ChatSummary(APIModel):
    id: str
    recipient: ProfileSummary
    last_message: str = ""
    updated_at: datetime
    post_id: Optional[str] = None
    created: bool = False


class ChatMessages(APIModel):
    chat_id: str
    messages: List[MessageOut]
    recipient: ProfileSummary
    post_id: Optional[str] = None


class AcceptResult(APIModel):
    message: str = "Request accepted"
    post: PostOut
    chat_id: str


class PaymentOut(APIModel):
    id: str
    user_id: str
    post_id: Optional[str] = None
    purpose: PaymentPurpose
    proof_url: str
    status: PaymentStatus
    amount: float
    reference: str
    created_at: datetime

    @classmethod
    def from_payment(cls, payment: Payment) -> "PaymentOut":
        return cls(
            id=payment.id,
            user_id=payment.user_id,
            post_id=payment.post_id,
            purpose=payment.purpose,
            proof_url=payment.proof_url,
            status=payment.status,
            amount=payment.amount,
            reference=payment.reference,
            created_at=payment.created_at,
        )
