import os
import uuid
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from liquidation_api.models.liquidation import (
    DocumentStatus,
    LiquidationStatus,
    WorkflowStatus,
)
from liquidation_api.services.auth_service import create_access_token
from liquidation_api.services.permissions import (
    Actor,
    ROLE_ACCOUNTANT,
    ROLE_ADMIN,
    ROLE_HEI,
    ROLE_REGIONAL_COORDINATOR,
)

# Matches scripts/seed.py
REGION_NCR_ID = uuid.UUID("10000000-0000-0000-0000-000000000001")
REGION_III_ID = uuid.UUID("10000000-0000-0000-0000-000000000003")
HEI_PUP_ID = uuid.UUID("20000000-0000-0000-0000-000000000001")


def make_actor(role: str, **kwargs) -> Actor:
    return Actor(
        user_id=kwargs.pop("user_id", uuid.uuid4()),
        role=role,
        name=kwargs.pop("name", f"Test {role}"),
        email=kwargs.pop("email", f"{role}@example.com"),
        **kwargs,
    )


def make_liquidation(
    status: WorkflowStatus = WorkflowStatus.DRAFT,
    hei_id: uuid.UUID = HEI_PUP_ID,
    created_by: uuid.UUID = None,
    control_no: str = "TES-2025-00001",
):
    liq = MagicMock()
    liq.id = uuid.uuid4()
    liq.control_no = control_no
    liq.hei_id = hei_id
    liq.created_by = created_by or uuid.uuid4()
    liq.status = status
    liq.liquidation_status = LiquidationStatus.UNLIQUIDATED
    liq.document_status = DocumentStatus.NONE
    liq.remarks = None
    liq.batch_no = None
    liq.date_submitted = None
    liq.deleted_at = None
    liq.created_at = datetime(2025, 1, 10)
    liq.updated_at = datetime(2025, 1, 10)
    return liq


def hei_snapshot(region_id: uuid.UUID = REGION_NCR_ID, hei_id: uuid.UUID = HEI_PUP_ID) -> dict:
    return {
        "id": str(hei_id),
        "uii": "13001",
        "code": "PUP",
        "name": "Polytechnic University of the Philippines",
        "region_id": str(region_id),
        "status": "active",
    }


class _DriverError(Exception):
    """Carries the attributes asyncpg sets on a constraint violation."""

    def __init__(self, sqlstate: str, constraint_name: str):
        super().__init__(f'violates constraint "{constraint_name}"')
        self.sqlstate = sqlstate
        self.constraint_name = constraint_name


def integrity_error(sqlstate: str, constraint_name: str) -> IntegrityError:
    return IntegrityError("INSERT", {}, _DriverError(sqlstate, constraint_name))


def mock_session() -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def session():
    return mock_session()


@pytest.fixture
def hei_user():
    return make_actor(ROLE_HEI, hei_id=HEI_PUP_ID)


@pytest.fixture
def rc_ncr():
    return make_actor(ROLE_REGIONAL_COORDINATOR, region_id=REGION_NCR_ID)


@pytest.fixture
def rc_region_iii():
    return make_actor(ROLE_REGIONAL_COORDINATOR, region_id=REGION_III_ID)


@pytest.fixture
def accountant():
    return make_actor(ROLE_ACCOUNTANT)


@pytest.fixture
def admin():
    return make_actor(ROLE_ADMIN)


def token_for(actor: Actor) -> str:
    return create_access_token(
        user_id=str(actor.user_id),
        role=actor.role,
        name=actor.name,
        email=actor.email,
        hei_id=str(actor.hei_id) if actor.hei_id else None,
        region_id=str(actor.region_id) if actor.region_id else None,
    )


@pytest.fixture
def auth_headers(admin):
    return {"Authorization": f"Bearer {token_for(admin)}"}


requires_db = pytest.mark.skipif(
    not os.getenv("TEST_DATABASE_URL"),
    reason="TEST_DATABASE_URL not set; integration tests need a seeded PostgreSQL",
)
