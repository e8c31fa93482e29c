"""
Email notifications
Dispatch is fire-and-forget: a send runs as an asyncio task scheduled after
the triggering transaction committed, and failures are only logged.
"""

import asyncio
from typing import Iterable, List, Optional, Protocol, Set, Tuple

import httpx
import structlog

from academy.core.config import Settings
from academy.models.bank_account import BankAccount
from academy.models.course import Course
from academy.models.notification import EmailTemplate, OrderSnapshot
from academy.models.order import Order

logger = structlog.get_logger()


class EmailSender(Protocol):
    async def send(self, to: List[str], subject: str, text: str) -> None:
        ...


class ResendEmailSender:
    """Sends plain-text email through the Resend HTTP API"""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.client = client or httpx.AsyncClient(base_url=settings.resend_api_url, timeout=10.0)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def send(self, to: List[str], subject: str, text: str) -> None:
        if not self.settings.resend_api_key:
            logger.warning("email_not_configured", to=to, subject=subject)
            return

        resp = await self.client.post(
            "/emails",
            json={
                "from": self.settings.email_from,
                "to": to,
                "subject": subject,
                "text": text,
            },
            headers={"Authorization": f"Bearer {self.settings.resend_api_key}"}
        )
        resp.raise_for_status()


def _money(snapshot: OrderSnapshot) -> str:
    return f"{snapshot.currency} {snapshot.amount}"


def render_email(template: EmailTemplate, snapshot: OrderSnapshot) -> Tuple[str, str]:
    """Subject and plain-text body for a template"""
    greeting = f"Hi {snapshot.customer_name},"

    if template == EmailTemplate.ORDER_CONFIRMATION:
        subject = f"Enrollment confirmed: {snapshot.course_title}"
        lines = [
            greeting,
            f"Your enrollment in {snapshot.course_title} is confirmed.",
            f"Order: {snapshot.order_number}",
            f"Amount: {_money(snapshot)}",
            f"Location: {snapshot.course_location or '-'}",
            f"Start date: {snapshot.start_date or 'to be announced'}",
        ]
    elif template == EmailTemplate.ADMIN_PAYMENT_NOTIFICATION:
        subject = f"New payment {snapshot.order_number}"
        lines = [
            f"{snapshot.customer_name} <{snapshot.customer_email}> paid {_money(snapshot)} "
            f"for {snapshot.course_title} via {snapshot.payment_method}.",
        ]
        if snapshot.coupon_code:
            lines.append(f"Coupon: {snapshot.coupon_code} ({snapshot.discount_percent}%)")
    elif template == EmailTemplate.WSET_DATA_REMINDER:
        subject = f"Complete your details for {snapshot.course_title}"
        lines = [
            greeting,
            "The certification body needs your full name, date of birth and ID document.",
            "Please complete your student profile before the course starts.",
        ]
    elif template == EmailTemplate.TRANSFER_INSTRUCTIONS:
        subject = f"Bank transfer instructions for order {snapshot.order_number}"
        lines = [
            greeting,
            f"To complete your enrollment in {snapshot.course_title}, transfer {_money(snapshot)} "
            f"to one of the accounts below and reference order {snapshot.order_number}.",
        ]
        for account in snapshot.bank_accounts:
            lines.append(
                f"- {account.get('bank_name')} ({account.get('currency')}): "
                f"{account.get('account_number')}, {account.get('account_holder')}"
            )
    elif template == EmailTemplate.ADMIN_TRANSFER_NOTIFICATION:
        subject = f"Transfer reported for order {snapshot.order_number}"
        lines = [
            f"{snapshot.customer_name} <{snapshot.customer_email}> reported a transfer of "
            f"{_money(snapshot)} for {snapshot.course_title}.",
            f"Reference: {snapshot.transfer_reference or '-'}",
            f"Proof: {snapshot.transfer_proof_url or '-'}",
        ]
    else:
        subject = f"Payment not approved for order {snapshot.order_number}"
        lines = [
            greeting,
            f"Your payment for {snapshot.course_title} was not approved"
            + (f" ({snapshot.status_detail})." if snapshot.status_detail else "."),
            "You can try again with another payment method from the course page.",
        ]

    return subject, "\n".join(lines)


def build_snapshot(
    order: Order,
    course: Course,
    customer_email: str,
    customer_name: Optional[str] = None,
    coupon_code: Optional[str] = None,
    bank_accounts: Optional[Iterable[BankAccount]] = None
) -> OrderSnapshot:
    return OrderSnapshot(
        order_id=order.id,
        order_number=order.order_number,
        customer_name=customer_name or customer_email,
        customer_email=customer_email,
        course_title=course.title,
        course_type=course.type.value,
        course_location=course.location,
        start_date=course.start_date.date().isoformat() if course.start_date else None,
        payment_method=order.payment_method.value,
        amount=order.final_amount,
        currency=order.currency.value,
        coupon_code=coupon_code,
        discount_percent=order.discount_percent,
        status_detail=order.mp_status_detail,
        transfer_reference=order.transfer_reference,
        transfer_proof_url=order.transfer_proof_url,
        bank_accounts=[account.model_dump(mode="json") for account in bank_accounts or []]
    )


class NotificationService:
    """Schedules email sends without blocking the caller"""

    def __init__(self, sender: EmailSender, settings: Settings):
        self.sender = sender
        self.settings = settings
        self._tasks: Set[asyncio.Task] = set()

    def admin_recipients(self, superadmin_emails: Iterable[str]) -> List[str]:
        """Superadmins, or the configured fallback list when there are none"""
        recipients = [email for email in superadmin_emails if email]
        return recipients or list(self.settings.admin_notification_emails)

    def dispatch(self, template: EmailTemplate, recipients: Iterable[str], snapshot: OrderSnapshot) -> Optional[asyncio.Task]:
        """Schedule a send; must only be called after the transaction committed"""
        to = [email for email in recipients if email]
        if not to:
            logger.warning("notification_without_recipients", template=template.value, order_id=snapshot.order_id)
            return None

        task = asyncio.create_task(self._send(template, to, snapshot))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _send(self, template: EmailTemplate, to: List[str], snapshot: OrderSnapshot) -> None:
        subject, text = render_email(template, snapshot)
        try:
            await self.sender.send(to, subject, text)
            logger.info("notification_sent", template=template.value, order_id=snapshot.order_id, to=to)
        except Exception as e:
            logger.error("notification_failed", template=template.value, order_id=snapshot.order_id, error=str(e))

    async def drain(self) -> None:
        """Wait for pending sends (shutdown and tests)"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
