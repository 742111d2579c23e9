"""
Manual Payment Verification Service.

Users pay by bank transfer and upload a proof image; an administrator then
verifies or rejects the payment. A payment is `pending` until that decision
and immutable afterwards.

A verified `unlock_acceptances` payment lifts the acceptance quota for its
owner (`resolve_unlock_payment`). It is not consumed by use.
"""

import logging
import time
from typing import List, Optional

from sqlmodel import col, select

from core.database import session_scope
from core.exceptions import (
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    PaymentPendingError,
)
from core.models import (
    Payment,
    PaymentOut,
    PaymentPurpose,
    PaymentStatus,
    Post,
    User,
)
from core.validation import InputValidator

logger = logging.getLogger(__name__)

POST_PURPOSES = {PaymentPurpose.POST_CREATION, PaymentPurpose.POST_EXTENSION}


def payment_reference(prefix: str = "PAY") -> str:
    return f"{prefix}-{int(time.time() * 1000)}"


class PaymentService:
    """Service for payment proofs and their review"""

    async def submit_proof(
        self,
        user_id: str,
        purpose: str,
        proof_url: str,
        post_id: Optional[str] = None,
        amount: Optional[float] = None,
    ) -> PaymentOut:
        """
        Record an uploaded proof of payment as a pending payment.

        Args:
            user_id: Paying user
            purpose: One of the `PaymentPurpose` values
            proof_url: URL of the stored proof image
            post_id: Required for post creation and extension payments
            amount: Amount transferred, if the client reports one
        """
        try:
            purpose = PaymentPurpose(purpose)
        except ValueError:
            raise InvalidArgumentError("purpose", purpose, "Invalid payment purpose")

        if amount is not None and amount < 0:
            raise InvalidArgumentError("amount", amount, "Amount cannot be negative")

        if purpose in POST_PURPOSES and not post_id:
            raise InvalidArgumentError(
                "postId", post_id, "A post is required for this payment"
            )
        if post_id is not None:
            InputValidator.validate_identifier(post_id, "postId")

        async with session_scope("submit_payment") as session:
            if post_id is not None:
                post = await session.get(Post, post_id)
                if post is None:
                    raise NotFoundError("Post", post_id)
                if post.owner_id != user_id:
                    raise ForbiddenError("You can only pay for your own posts", "post")

            payment = Payment(
                user_id=user_id,
                post_id=post_id,
                purpose=purpose,
                proof_url=proof_url,
                amount=amount or 0.0,
                reference=payment_reference(),
            )
            session.add(payment)
            await session.commit()

        logger.info(
            f"Payment {payment.id} submitted by user {user_id}",
            extra={"payment_id": payment.id, "purpose": purpose.value},
        )
        return PaymentOut.from_payment(payment)

    async def list_pending(self, admin_id: str) -> List[PaymentOut]:
        async with session_scope("list_payments") as session:
            await self._require_admin(session, admin_id)
            result = await session.exec(
                select(Payment)
                .where(Payment.status == PaymentStatus.PENDING)
                .order_by(col(Payment.created_at))
            )
            payments = result.all()

        return [PaymentOut.from_payment(payment) for payment in payments]

    async def verify(self, payment_id: str, admin_id: str) -> PaymentOut:
        return await self._review(payment_id, admin_id, PaymentStatus.VERIFIED)

    async def reject(self, payment_id: str, admin_id: str) -> PaymentOut:
        return await self._review(payment_id, admin_id, PaymentStatus.REJECTED)

    async def resolve_unlock_payment(self, payment_id: str, user_id: str) -> Payment:
        """
        Return the verified unlock payment `payment_id` of `user_id`.

        Raises:
            InvalidArgumentError: Unknown, foreign, wrong-purpose or rejected payment
            PaymentPendingError: The payment has not been reviewed yet
        """
        InputValidator.validate_identifier(payment_id, "paymentId")

        async with session_scope("resolve_payment") as session:
            payment = await session.get(Payment, payment_id)

        if (
            payment is None
            or payment.user_id != user_id
            or payment.purpose != PaymentPurpose.UNLOCK_ACCEPTANCES
        ):
            raise InvalidArgumentError("paymentId", payment_id, "Invalid or missing payment")

        if payment.status == PaymentStatus.PENDING:
            raise PaymentPendingError(payment_id)

        if payment.status == PaymentStatus.REJECTED:
            raise InvalidArgumentError("paymentId", payment_id, "Payment was rejected")

        return payment

    async def _review(
        self, payment_id: str, admin_id: str, status: PaymentStatus
    ) -> PaymentOut:
        InputValidator.validate_identifier(payment_id, "paymentId")

        async with session_scope("review_payment") as session:
            await self._require_admin(session, admin_id)

            payment = await session.get(Payment, payment_id)
            if payment is None:
                raise NotFoundError("Payment", payment_id)
            if payment.status != PaymentStatus.PENDING:
                raise InvalidStateError(
                    "Payment",
                    payment_id,
                    payment.status.value,
                    f"Payment is already {payment.status.value}",
                )

            payment.status = status
            session.add(payment)
            await session.commit()

        logger.info(
            f"Payment {payment_id} {status.value} by admin {admin_id}",
            extra={"payment_id": payment_id, "status": status.value},
        )
        return PaymentOut.from_payment(payment)

    async def _require_admin(self, session, user_id: str) -> User:
        user = await session.get(User, user_id)
        if user is None or not user.is_admin:
            raise ForbiddenError("Admin access required")
        return user
