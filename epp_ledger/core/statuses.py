"""Closed vocabularies for items, ledger movements, deliveries and assignments."""

from __future__ import annotations

import enum

from .exceptions import InvalidStateError


class ItemClass(str, enum.Enum):
    PROTECTIVE_GEAR = "PROTECTIVE_GEAR"
    UNIFORM = "UNIFORM"
    EMERGENCY_EQUIPMENT = "EMERGENCY_EQUIPMENT"


class UnitOfMeasure(str, enum.Enum):
    UNIT = "UNIT"
    PAIR = "PAIR"
    KIT = "KIT"
    BOX = "BOX"


class MovementType(str, enum.Enum):
    INBOUND_SUPPLY = "INBOUND_SUPPLY"
    DELIVERY_OUT = "DELIVERY_OUT"
    RENEWAL_OUT = "RENEWAL_OUT"
    RETURN_IN = "RETURN_IN"
    CORRECTION_IN = "CORRECTION_IN"
    CORRECTION_OUT = "CORRECTION_OUT"

    @property
    def direction(self) -> int:
        """+1 for movements that add stock, -1 for movements that remove it."""

        return -1 if self in _OUTBOUND_MOVEMENTS else 1


_OUTBOUND_MOVEMENTS = {
    MovementType.DELIVERY_OUT,
    MovementType.RENEWAL_OUT,
    MovementType.CORRECTION_OUT,
}


class ReferenceKind(str, enum.Enum):
    DELIVERY = "DELIVERY"
    RENEWAL = "RENEWAL"
    CANCELLATION = "CANCELLATION"
    LINE_REMOVAL = "LINE_REMOVAL"
    ERASURE = "ERASURE"
    REPAIR = "REPAIR"


class DeliveryReason(str, enum.Enum):
    STANDARD_ISSUE = "STANDARD_ISSUE"
    NEW_HIRE = "NEW_HIRE"
    RENEWAL = "RENEWAL"
    REPLACEMENT = "REPLACEMENT"
    DAMAGE = "DAMAGE"
    LOSS = "LOSS"
    CORRECTION = "CORRECTION"
    OTHER = "OTHER"


class DeliveryStatus(str, enum.Enum):
    PENDING = "PENDING"
    SIGNED = "SIGNED"
    CANCELLED = "CANCELLED"


class SignatureStage(str, enum.Enum):
    """Where a delivery sits in the two-party signature workflow."""

    PENDING = "PENDING"
    PENDING_AWAITING_RESPONSIBLE = "PENDING_AWAITING_RESPONSIBLE"
    SIGNED = "SIGNED"
    CANCELLED = "CANCELLED"


class AssignmentStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    RENEWED = "RENEWED"


class RenewalUrgency(str, enum.Enum):
    OVERDUE = "OVERDUE"
    DUE_SOON = "DUE_SOON"
    CURRENT = "CURRENT"


DELIVERY_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.SIGNED, DeliveryStatus.CANCELLED}),
    DeliveryStatus.SIGNED: frozenset(),
    DeliveryStatus.CANCELLED: frozenset(),
}

# RENEWED -> ACTIVE only happens when the superseding delivery is undone.
ASSIGNMENT_TRANSITIONS: dict[AssignmentStatus, frozenset[AssignmentStatus]] = {
    AssignmentStatus.ACTIVE: frozenset({AssignmentStatus.RENEWED}),
    AssignmentStatus.RENEWED: frozenset({AssignmentStatus.ACTIVE}),
}


def transition_delivery(current: DeliveryStatus | str, target: DeliveryStatus, *, delivery_id: int) -> DeliveryStatus:
    """Return ``target`` if the delivery may move there, else raise ``InvalidStateError``."""

    current = DeliveryStatus(current)
    if target not in DELIVERY_TRANSITIONS[current]:
        raise InvalidStateError(
            f"delivery {delivery_id} is {current.value} and cannot become {target.value}",
            entity="delivery",
            identifier=delivery_id,
            status=current.value,
        )
    return target


def require_delivery_status(current: DeliveryStatus | str, allowed: DeliveryStatus, *, delivery_id: int, action: str) -> None:
    current = DeliveryStatus(current)
    if current is not allowed:
        raise InvalidStateError(
            f"cannot {action} delivery {delivery_id}: it is {current.value}",
            entity="delivery",
            identifier=delivery_id,
            status=current.value,
        )


def transition_assignment(current: AssignmentStatus | str, target: AssignmentStatus, *, assignment_id: int) -> AssignmentStatus:
    current = AssignmentStatus(current)
    if target not in ASSIGNMENT_TRANSITIONS[current]:
        raise InvalidStateError(
            f"assignment {assignment_id} is {current.value} and cannot become {target.value}",
            entity="assignment",
            identifier=assignment_id,
            status=current.value,
        )
    return target


__all__ = [
    "ASSIGNMENT_TRANSITIONS",
    "AssignmentStatus",
    "DELIVERY_TRANSITIONS",
    "DeliveryReason",
    "DeliveryStatus",
    "ItemClass",
    "MovementType",
    "ReferenceKind",
    "RenewalUrgency",
    "SignatureStage",
    "UnitOfMeasure",
    "require_delivery_status",
    "transition_assignment",
    "transition_delivery",
]
