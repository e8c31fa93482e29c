"""
Payment provider webhooks
"""

from fastapi import APIRouter, Depends, Request

from academy.api.dependencies import get_webhook_service
from academy.services.payment_webhook_service import PaymentWebhookService

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/mercadopago")
async def mercadopago_webhook(
    request: Request,
    webhook_service: PaymentWebhookService = Depends(get_webhook_service)
):
    """
    200 for every verified delivery, no-ops included.
    401 bad signature, 400 malformed payload, 5xx transient failures (provider retries).
    """
    outcome = await webhook_service.handle(
        raw_body=await request.body(),
        signature_header=request.headers.get("x-signature"),
        request_id=request.headers.get("x-request-id"),
        query_data_id=request.query_params.get("data.id")
    )
    return outcome.model_dump(mode="json")


@router.api_route("/mercadopago", methods=["GET", "HEAD"])
async def mercadopago_webhook_probe():
    """Provider reachability check"""
    return {"status": "ok"}
