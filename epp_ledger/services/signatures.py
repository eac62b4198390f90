"""Two-party signature workflow for deliveries.

PENDING -> (employee signs) -> PENDING_AWAITING_RESPONSIBLE -> (responsible signs) -> SIGNED

Only the responsible signature flips ``status``; the intermediate stage is
derived from the stored employee signature (see ``Delivery.signature_stage``).
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import InvalidStateError, ValidationError
from ..core.logging import log_extra
from ..core.statuses import DeliveryStatus, require_delivery_status, transition_delivery
from ..models.delivery import Delivery
from .dates import utcnow_iso
from .deliveries import lock_delivery
from .uow import transactional

logger = logging.getLogger("epp_ledger.signatures")


def _require_payload(signature: str | None, delivery_id: int) -> str:
    payload = (signature or "").strip()
    if not payload:
        raise ValidationError("signature payload is empty", delivery_id=delivery_id)
    return payload


@transactional
def sign_employee(db: Session, delivery_id: int, signature: str, *, signer_ip: str | None = None) -> Delivery:
    """Store the employee's signature; the delivery stays PENDING."""

    delivery = lock_delivery(db, delivery_id)
    require_delivery_status(delivery.status, DeliveryStatus.PENDING, delivery_id=delivery.id, action="sign")
    delivery.employee_signature_data = _require_payload(signature, delivery.id)
    delivery.employee_signature_ip = signer_ip
    delivery.employee_signed_at = utcnow_iso()
    delivery.updated_at = delivery.employee_signed_at
    db.flush()
    logger.info("delivery.employee_signed", extra=log_extra(delivery_id=delivery.id))
    return delivery


@transactional
def sign_responsible(
    db: Session,
    delivery_id: int,
    signature: str,
    *,
    responsible_name: str,
    responsible_position: str | None = None,
) -> Delivery:
    """Store the responsible's signature and identity, finalising the delivery."""

    delivery = lock_delivery(db, delivery_id)
    target = transition_delivery(delivery.status, DeliveryStatus.SIGNED, delivery_id=delivery.id)
    payload = _require_payload(signature, delivery.id)
    name = (responsible_name or "").strip()
    if not name:
        raise ValidationError("responsible_name is required", delivery_id=delivery.id)

    if not delivery.employee_signed_at:
        if settings.ENFORCE_SIGNATURE_ORDER:
            raise InvalidStateError(
                f"delivery {delivery.id} has no employee signature yet",
                entity="delivery",
                identifier=delivery.id,
                status=delivery.status,
            )
        logger.warning(
            "delivery.signed_without_employee_signature",
            extra=log_extra(delivery_id=delivery.id, responsible_name=name),
        )

    delivery.responsible_signature_data = payload
    delivery.responsible_name = name
    delivery.responsible_position = (responsible_position or "").strip() or None
    delivery.responsible_signed_at = utcnow_iso()
    delivery.status = target.value
    delivery.updated_at = delivery.responsible_signed_at
    db.flush()
    logger.info(
        "delivery.signed",
        extra=log_extra(delivery_id=delivery.id, responsible_name=name),
    )
    return delivery
