from __future__ import annotations

import logging
from typing import Optional

from celery import shared_task
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string

from notifications.models import Notification, NotificationLog

logger = logging.getLogger(__name__)
User = get_user_model()


def _get_user(user_id: int) -> Optional[User]:
    try:
        return User.objects.get(pk=user_id)
    except User.DoesNotExist:
        logger.warning("notifications: user %s no longer exists", user_id)
        return None


def _render(template: str, context: dict) -> str:
    """Render a template relative to the notifications app."""
    return render_to_string(template, context).strip()


def _frontend_url(path: str = "") -> str:
    origin = (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")
    if not origin:
        return ""
    return f"{origin}{path}"


def _build_email_context(extra: Optional[dict]) -> dict:
    context = {
        "site_name": getattr(settings, "SITE_NAME", "Vendibook"),
        "site_url": _frontend_url(),
    }
    if extra:
        context.update(extra)
    return context


def _log_notification(
    type_: str,
    status: str,
    *,
    user_id: int | None = None,
    booking_id: int | None = None,
    sale_id: int | None = None,
    error: str | None = None,
) -> None:
    try:
        NotificationLog.objects.create(
            channel=NotificationLog.Channel.EMAIL,
            type=type_,
            status=status,
            user_id=user_id,
            booking_id=booking_id,
            sale_id=sale_id,
            error=error or "",
        )
    except Exception:
        logger.exception(
            "notifications: failed to persist notification log",
            extra={"type": type_, "status": status},
        )


def _prepare_email_bodies(subject: str, template: str, context: dict | None) -> tuple[str, str | None]:
    context_with_brand = _build_email_context(context or {})
    context_with_brand["subject"] = subject
    body = _render(f"email/{template}", context_with_brand)
    html_template = f"email/{template.rsplit('.', 1)[0]}.html"
    try:
        html_body = _render(html_template, context_with_brand)
    except TemplateDoesNotExist:
        html_body = None
    return body, html_body


def _send_email_logged(
    type_: str,
    *,
    to_email: str | None,
    subject: str,
    template: str,
    context: dict | None = None,
    user_id: int | None = None,
    booking_id: int | None = None,
    sale_id: int | None = None,
) -> bool:
    if not to_email:
        _log_notification(
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            sale_id=sale_id,
            error="missing recipient email",
        )
        logger.warning("notifications: cannot send email without recipient")
        return False

    text_body, html_body = _prepare_email_bodies(subject, template, context)
    message = EmailMultiAlternatives(
        subject=subject,
        body=text_body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to_email],
    )
    if html_body:
        message.attach_alternative(html_body, "text/html")

    try:
        message.send(fail_silently=False)
    except Exception as exc:
        logger.exception(
            "notifications: email send failed",
            extra={"type": type_, "booking_id": booking_id, "sale_id": sale_id, "user_id": user_id},
        )
        _log_notification(
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            sale_id=sale_id,
            error=str(exc) or exc.__class__.__name__,
        )
        return False

    _log_notification(
        type_,
        NotificationLog.Status.SENT,
        user_id=user_id,
        booking_id=booking_id,
        sale_id=sale_id,
    )
    return True


def _load_booking(booking_id: int):
    from bookings.models import BookingRequest

    try:
        return BookingRequest.objects.select_related("listing", "shopper", "host").get(pk=booking_id)
    except BookingRequest.DoesNotExist:
        logger.warning("notifications: booking %s no longer exists", booking_id)
        return None


@shared_task(name="notifications.create_notification", queue="default")
def create_notification(
    user_id: int,
    type: str,
    title: str,
    message: str,
    link: str | None = None,
    data: dict | None = None,
) -> int | None:
    """Persist an in-app notification; returns its id."""
    if _get_user(user_id) is None:
        return None
    notification = Notification.objects.create(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        link=link or "",
        data=data,
    )
    return notification.pk


@shared_task(name="notifications.send_payout_email", queue="emails")
def send_payout_email(booking_id: int, amount: str) -> None:
    """Email the host that their booking payout was transferred."""
    booking = _load_booking(booking_id)
    if booking is None:
        return
    host = booking.host
    listing_title = booking.listing.title
    _send_email_logged(
        "payout_sent",
        to_email=host.email,
        subject=f"Payout sent for {listing_title}",
        template="payout_sent.txt",
        context={
            "host_name": host.name_for_display("Host"),
            "listing_title": listing_title,
            "amount": amount,
            "start_date": booking.start_date,
            "end_date": booking.end_date,
            "cta_url": _frontend_url("/dashboard?tab=payouts"),
        },
        user_id=host.pk,
        booking_id=booking.pk,
    )


@shared_task(name="notifications.send_refund_email", queue="emails")
def send_refund_email(
    booking_id: int,
    recipient: str,
    amount: str,
    reason: str | None = None,
    initiated_by: str | None = None,
) -> None:
    """Email the shopper or the host that a booking refund was issued."""
    booking = _load_booking(booking_id)
    if booking is None:
        return
    user = booking.host if recipient == "host" else booking.shopper
    listing_title = booking.listing.title
    _send_email_logged(
        f"refund_processed_{recipient}",
        to_email=user.email,
        subject=f"Booking cancelled: {listing_title}",
        template="refund_processed.txt",
        context={
            "recipient_name": user.name_for_display("there"),
            "is_host": recipient == "host",
            "listing_title": listing_title,
            "amount": amount,
            "reason": reason or "",
            "initiated_by": initiated_by or "",
            "start_date": booking.start_date,
            "end_date": booking.end_date,
        },
        user_id=user.pk,
        booking_id=booking.pk,
    )


@shared_task(name="notifications.send_deposit_refund_email", queue="emails")
def send_deposit_refund_email(booking_id: int, amount: str, notes: str | None = None) -> None:
    """Email the shopper that their security deposit was returned."""
    booking = _load_booking(booking_id)
    if booking is None:
        return
    shopper = booking.shopper
    _send_email_logged(
        "deposit_refunded",
        to_email=shopper.email,
        subject="Your security deposit has been refunded",
        template="deposit_refunded.txt",
        context={
            "shopper_name": shopper.name_for_display("there"),
            "listing_title": booking.listing.title,
            "amount": amount,
            "notes": notes or "",
        },
        user_id=shopper.pk,
        booking_id=booking.pk,
    )


@shared_task(name="notifications.send_sale_payout_email", queue="emails")
def send_sale_payout_email(transaction_id: int) -> None:
    """Email the seller that a sale payout was transferred."""
    from sales.models import SaleTransaction

    try:
        sale = SaleTransaction.objects.select_related("listing", "seller").get(pk=transaction_id)
    except SaleTransaction.DoesNotExist:
        logger.warning("notifications: sale %s no longer exists", transaction_id)
        return
    seller = sale.seller
    _send_email_logged(
        "sale_payout_sent",
        to_email=seller.email,
        subject=f"Payout sent for {sale.listing.title}",
        template="sale_payout_sent.txt",
        context={
            "seller_name": seller.name_for_display("Seller"),
            "listing_title": sale.listing.title,
            "amount": f"{sale.seller_payout:.2f}",
            "cta_url": _frontend_url("/dashboard?tab=sales"),
        },
        user_id=seller.pk,
        sale_id=sale.pk,
    )
