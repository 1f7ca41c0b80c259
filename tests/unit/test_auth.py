"""
Unit tests for token issuance, claim -> Actor mapping and the role table.
"""

import uuid

import pytest
from jose import JWTError, jwt

from liquidation_api.config import settings
from liquidation_api.middleware.auth import actor_from_claims
from liquidation_api.services.auth_service import create_access_token, verify_access_token
from liquidation_api.services.permissions import (
    ENDORSE_TO_ACCOUNTING,
    ENDORSE_TO_COA,
    MANAGE_ALL_LIQUIDATIONS,
    REGION_SCOPED,
    RETURN_TO_RC,
    ROLE_ACCOUNTANT,
    ROLE_ADMIN,
    ROLE_HEI,
    ROLE_REGIONAL_COORDINATOR,
    SUBMIT_LIQUIDATION,
    Actor,
    has_capability,
)


def test_token_round_trip_builds_actor():
    user_id, hei_id = uuid.uuid4(), uuid.uuid4()
    token = create_access_token(
        user_id=str(user_id), role=ROLE_HEI, name="PUP Office", email="pup@example.com",
        hei_id=str(hei_id),
    )

    actor = actor_from_claims(verify_access_token(token))

    assert actor.user_id == user_id
    assert actor.role == ROLE_HEI
    assert actor.name == "PUP Office"
    assert actor.hei_id == hei_id
    assert actor.region_id is None


def test_refresh_style_token_rejected():
    token = jwt.encode(
        {"sub": str(uuid.uuid4()), "role": ROLE_ADMIN, "type": "refresh"},
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )
    with pytest.raises(JWTError):
        verify_access_token(token)


def test_expired_token_rejected():
    token = create_access_token(
        user_id=str(uuid.uuid4()), role=ROLE_ADMIN, name="a", expires_minutes=-1
    )
    with pytest.raises(JWTError):
        verify_access_token(token)


def _actor(role):
    return Actor(user_id=uuid.uuid4(), role=role, name=role)


def test_role_capabilities():
    rc = _actor(ROLE_REGIONAL_COORDINATOR)
    assert has_capability(rc, ENDORSE_TO_ACCOUNTING)
    assert has_capability(rc, REGION_SCOPED)
    assert not has_capability(rc, ENDORSE_TO_COA)
    assert not has_capability(rc, SUBMIT_LIQUIDATION)

    accountant = _actor(ROLE_ACCOUNTANT)
    assert has_capability(accountant, ENDORSE_TO_COA)
    assert has_capability(accountant, RETURN_TO_RC)
    assert not has_capability(accountant, ENDORSE_TO_ACCOUNTING)

    admin = _actor(ROLE_ADMIN)
    assert has_capability(admin, MANAGE_ALL_LIQUIDATIONS)
    assert not has_capability(admin, REGION_SCOPED)


def test_unknown_role_has_nothing():
    assert _actor("vendor").capabilities == frozenset()


def test_extra_capabilities_extend_role():
    actor = Actor(
        user_id=uuid.uuid4(), role=ROLE_HEI, name="x",
        extra_capabilities=frozenset({ENDORSE_TO_COA}),
    )
    assert has_capability(actor, ENDORSE_TO_COA)
    assert has_capability(actor, SUBMIT_LIQUIDATION)
