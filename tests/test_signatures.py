import logging
import os
import sys
from datetime import date
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from epp_ledger.core.config import settings
from epp_ledger.core.exceptions import InvalidStateError, ValidationError
from epp_ledger.core.statuses import DeliveryStatus, SignatureStage
from epp_ledger.crud.employees import create_employee
from epp_ledger.crud.inventory import register_item
from epp_ledger.db.session import Base
from epp_ledger.services.deliveries import cancel_delivery, create_delivery
from epp_ledger.services.signatures import sign_employee, sign_responsible

# Ensure models are imported so metadata is populated
from epp_ledger.models import assignment as assignment_model  # noqa: F401
from epp_ledger.models import stock as stock_model  # noqa: F401


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def delivery(db_session):
    employee = create_employee(db_session, {"full_name": "Luis Mamani", "site_id": "site-1"})
    gloves = register_item(db_session, {"name": "Nitrile gloves", "site_id": "site-1", "initial_stock": 50})
    return create_delivery(
        db_session,
        employee_id=employee.id,
        site_id="site-1",
        actor="supervisor",
        lines=[{"item_id": gloves.id, "quantity": 2}],
        delivery_date=date(2024, 5, 2),
    )


def test_two_party_signature_flow(db_session, delivery):
    signed_by_employee = sign_employee(db_session, delivery.id, "data:image/png;base64,EMP", signer_ip="10.0.0.7")

    assert signed_by_employee.status == DeliveryStatus.PENDING.value
    assert signed_by_employee.signature_stage is SignatureStage.PENDING_AWAITING_RESPONSIBLE
    assert signed_by_employee.employee_signature_ip == "10.0.0.7"

    signed = sign_responsible(
        db_session,
        delivery.id,
        "data:image/png;base64,RESP",
        responsible_name="  Carla Rojas ",
        responsible_position="Safety lead",
    )

    assert signed.status == DeliveryStatus.SIGNED.value
    assert signed.signature_stage is SignatureStage.SIGNED
    assert signed.responsible_name == "Carla Rojas"
    assert signed.responsible_signed_at


def test_signatures_are_refused_once_final(db_session, delivery):
    sign_responsible(db_session, delivery.id, "sig", responsible_name="Carla Rojas")

    with pytest.raises(InvalidStateError):
        sign_employee(db_session, delivery.id, "late")
    with pytest.raises(InvalidStateError):
        sign_responsible(db_session, delivery.id, "again", responsible_name="Carla Rojas")


def test_cancelled_delivery_cannot_be_signed(db_session, delivery):
    cancel_delivery(db_session, delivery.id, "not collected")

    with pytest.raises(InvalidStateError):
        sign_employee(db_session, delivery.id, "sig")
    with pytest.raises(InvalidStateError):
        sign_responsible(db_session, delivery.id, "sig", responsible_name="Carla Rojas")


def test_empty_signature_or_name_is_rejected(db_session, delivery):
    with pytest.raises(ValidationError):
        sign_employee(db_session, delivery.id, "   ")
    with pytest.raises(ValidationError):
        sign_responsible(db_session, delivery.id, "sig", responsible_name="")

    db_session.refresh(delivery)
    assert delivery.employee_signed_at is None
    assert delivery.status == DeliveryStatus.PENDING.value


def test_responsible_may_sign_first_with_warning(db_session, delivery, caplog):
    with caplog.at_level(logging.WARNING, logger="epp_ledger.signatures"):
        signed = sign_responsible(db_session, delivery.id, "sig", responsible_name="Carla Rojas")

    assert signed.status == DeliveryStatus.SIGNED.value
    assert any(r.getMessage() == "delivery.signed_without_employee_signature" for r in caplog.records)


def test_signature_order_can_be_enforced(db_session, delivery, monkeypatch):
    monkeypatch.setattr(settings, "ENFORCE_SIGNATURE_ORDER", True)

    with pytest.raises(InvalidStateError):
        sign_responsible(db_session, delivery.id, "sig", responsible_name="Carla Rojas")

    sign_employee(db_session, delivery.id, "emp")
    signed = sign_responsible(db_session, delivery.id, "sig", responsible_name="Carla Rojas")
    assert signed.status == DeliveryStatus.SIGNED.value
