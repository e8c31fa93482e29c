"""
Checkout endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import JSONResponse

from academy.api.dependencies import get_checkout_service, get_current_user, get_upload_service
from academy.models.checkout import CheckoutOutcome, CheckoutRequest, CheckoutResult, TransferSentRequest
from academy.models.coupon import CouponValidateRequest
from academy.models.user import AuthenticatedUser
from academy.services.checkout_service import CheckoutService
from academy.services.upload_service import UploadService

router = APIRouter(prefix="/checkout", tags=["checkout"])

OUTCOME_STATUS = {
    CheckoutOutcome.REDIRECT: status.HTTP_201_CREATED,
    CheckoutOutcome.PENDING_TRANSFER: status.HTTP_201_CREATED,
    CheckoutOutcome.COMPLETED: status.HTTP_201_CREATED,
    CheckoutOutcome.BLOCKED: status.HTTP_409_CONFLICT,
    CheckoutOutcome.INVALID: status.HTTP_422_UNPROCESSABLE_ENTITY,
    CheckoutOutcome.PROVIDER_ERROR: status.HTTP_502_BAD_GATEWAY,
}


def checkout_response(result: CheckoutResult) -> JSONResponse:
    payload = result.model_dump(mode="json")
    payload["success"] = result.success
    return JSONResponse(status_code=OUTCOME_STATUS[result.outcome], content=payload)


@router.get("/orders")
async def list_my_orders(
    user: AuthenticatedUser = Depends(get_current_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Orders of the caller, newest first"""
    orders = await checkout_service.get_user_orders(user)
    return {"success": True, "data": [order.model_dump(mode="json") for order in orders]}


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Order status, read by the success and pending pages"""
    order = await checkout_service.get_order_for_user(user, order_id)
    return {"success": True, "data": order.model_dump(mode="json")}


@router.post("/orders/{order_id}/transfer-sent")
async def mark_transfer_sent(
    order_id: str,
    request: TransferSentRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    order = await checkout_service.mark_transfer_sent(user, order_id, request)
    return {"success": True, "data": order.model_dump(mode="json")}


@router.post("/orders/{order_id}/transfer-proof")
async def upload_transfer_proof(
    order_id: str,
    file: UploadFile = File(...),
    reference: Optional[str] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    checkout_service: CheckoutService = Depends(get_checkout_service),
    upload_service: UploadService = Depends(get_upload_service)
):
    """Store the proof file, then record it on the order"""
    order = await checkout_service.get_transfer_order_for_owner(user, order_id)
    data = await file.read()
    proof_url = await upload_service.store_transfer_proof(order.order_number, file.content_type, data)
    order = await checkout_service.mark_transfer_sent(
        user,
        order_id,
        TransferSentRequest(reference=reference, proof_url=proof_url)
    )
    return {"success": True, "data": order.model_dump(mode="json")}


@router.post("/orders/{order_id}/cancel")
async def cancel_my_order(
    order_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    order = await checkout_service.cancel_order(user, order_id)
    return {"success": True, "data": order.model_dump(mode="json")}


@router.post("/coupons/validate")
async def validate_coupon(
    request: CouponValidateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Coupon preview; a rejected coupon is a normal answer, not an error"""
    validation = await checkout_service.validate_coupon(user, request.course_id, request.coupon_code)
    return {"success": True, "data": validation.model_dump(mode="json", exclude={"coupon"})}


@router.post("")
async def submit_checkout(
    request: CheckoutRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    result = await checkout_service.submit_checkout(user, request)
    return checkout_response(result)


@router.get("/{course_id}")
async def get_checkout_context(
    course_id: str,
    coupon_code: Optional[str] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Everything the checkout page renders"""
    context = await checkout_service.get_checkout_context(user, course_id, coupon_code)
    data = context.model_dump(mode="json")
    if context.coupon_validation:
        data["coupon_validation"].pop("coupon", None)
    data["can_enroll"] = context.can_enroll
    data["block_message"] = context.eligibility.message
    return {"success": True, "data": data}
