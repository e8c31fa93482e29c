"""
Admin order endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from academy.api.dependencies import get_checkout_service, get_order_service, require_superadmin
from academy.models.order import OrderFilters, OrderStatus, PaymentMethod
from academy.models.user import AuthenticatedUser
from academy.services.checkout_service import CheckoutService
from academy.services.order_service import OrderService

router = APIRouter(prefix="/admin/orders", tags=["admin"])


@router.get("")
async def list_orders(
    status: Optional[OrderStatus] = None,
    payment_method: Optional[PaymentMethod] = None,
    course_id: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: AuthenticatedUser = Depends(require_superadmin),
    order_service: OrderService = Depends(get_order_service)
):
    page = await order_service.list_orders(OrderFilters(
        status=status,
        payment_method=payment_method,
        course_id=course_id,
        user_id=user_id,
        limit=limit,
        offset=offset
    ))
    return {"success": True, "data": page.model_dump(mode="json")}


@router.get("/pending-transfers")
async def pending_transfers(
    admin: AuthenticatedUser = Depends(require_superadmin),
    order_service: OrderService = Depends(get_order_service)
):
    """Bank transfers waiting for confirmation, oldest first"""
    orders = await order_service.get_pending_transfer_orders()
    return {"success": True, "data": [order.model_dump(mode="json") for order in orders]}


@router.post("/{order_id}/confirm-transfer")
async def confirm_transfer(
    order_id: str,
    admin: AuthenticatedUser = Depends(require_superadmin),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    result = await checkout_service.confirm_transfer_payment(admin, order_id)
    payload = result.model_dump(mode="json")
    payload["success"] = result.success
    return payload


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    admin: AuthenticatedUser = Depends(require_superadmin),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    order = await checkout_service.cancel_order(admin, order_id)
    return {"success": True, "data": order.model_dump(mode="json")}
