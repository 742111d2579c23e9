"""
Payment Endpoints.

Endpoints Provided:
- `POST /payments/upload`: multipart upload of a payment `proof` image with
  its `purpose`, optional `postId` and `amount`. Creates a pending payment.
- `GET /payments/pending`: pending payments (admin only).
- `PUT /payments/{payment_id}/verify`, `PUT /payments/{payment_id}/reject`:
  review a pending payment (admin only).
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from api.dependencies import get_current_user, get_payment_service, get_upload_service
from core.auth import AuthenticatedUser
from core.exceptions import InvalidArgumentError
from core.logging_config import get_logger, log_function_call
from services.payment_service import PaymentService
from services.upload_service import UploadService

logger = get_logger(__name__)
router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/upload")
@log_function_call(logger)
async def upload_proof(
    proof: Optional[UploadFile] = File(None),
    purpose: str = Form(""),
    postId: Optional[str] = Form(None),
    amount: Optional[float] = Form(None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service),
    upload_service: UploadService = Depends(get_upload_service),
):
    if proof is None:
        raise InvalidArgumentError("proof", None, "Payment proof is required")

    proof_url = await upload_service.store_image(
        await proof.read(), proof.filename, proof.content_type, "proof"
    )
    payment = await payment_service.submit_proof(
        current_user.id, purpose, proof_url, post_id=postId or None, amount=amount
    )
    return {"message": "Payment proof uploaded", "payment": payment.to_payload()}


@router.get("/pending")
async def list_pending(
    current_user: AuthenticatedUser = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service),
):
    payments = await payment_service.list_pending(current_user.id)
    return [payment.to_payload() for payment in payments]


@router.put("/{payment_id}/verify")
@log_function_call(logger)
async def verify_payment(
    payment_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service),
):
    payment = await payment_service.verify(payment_id, current_user.id)
    return {"message": "Payment verified successfully", "payment": payment.to_payload()}


@router.put("/{payment_id}/reject")
@log_function_call(logger)
async def reject_payment(
    payment_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service),
):
    payment = await payment_service.reject(payment_id, current_user.id)
    return {"message": "Payment rejected", "payment": payment.to_payload()}
