"""
End-to-end workflow against a seeded PostgreSQL (python -m scripts.seed).

Set TEST_DATABASE_URL (and DATABASE_URL to the same value) to run.
"""

import asyncio
import random
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import HEI_PUP_ID, REGION_NCR_ID, REGION_III_ID, make_actor, requires_db, token_for
from liquidation_api.main import app
from liquidation_api.services.permissions import (
    ROLE_ACCOUNTANT,
    ROLE_HEI,
    ROLE_REGIONAL_COORDINATOR,
)

# One loop for the module: the engine pool is bound to the loop that opened it
pytestmark = [requires_db, pytest.mark.integration, pytest.mark.asyncio(loop_scope="module")]

# Seeded users from scripts/seed.py
HEI_USER = make_actor(
    ROLE_HEI, user_id=uuid.UUID("a0000000-0000-0000-0000-000000000003"),
    name="PUP Scholarship Office", hei_id=HEI_PUP_ID,
)
RC_NCR = make_actor(
    ROLE_REGIONAL_COORDINATOR, user_id=uuid.UUID("a0000000-0000-0000-0000-000000000004"),
    name="Regional Coordinator NCR", region_id=REGION_NCR_ID,
)
RC_III = make_actor(
    ROLE_REGIONAL_COORDINATOR, user_id=uuid.UUID("a0000000-0000-0000-0000-000000000005"),
    name="Regional Coordinator III", region_id=REGION_III_ID,
)
ACCOUNTANT = make_actor(
    ROLE_ACCOUNTANT, user_id=uuid.UUID("a0000000-0000-0000-0000-000000000006"),
    name="Accounting Unit",
)

BASE = "/api/v1/liquidations"


@pytest_asyncio.fixture(loop_scope="module")
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


def auth(actor):
    return {"Authorization": f"Bearer {token_for(actor)}"}


async def _create_draft(client) -> dict:
    resp = await client.post(BASE, json={
        "uii": "13001",
        "program": "TES",
        "academic_year": "2024-2025",
        "semester": "1st",
        "amount_received": "150000.00",
        "date_fund_released": "2025-01-15",
    }, headers=auth(RC_NCR))
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _add_beneficiary(client, liquidation_id):
    resp = await client.post(f"{BASE}/{liquidation_id}/beneficiaries", json={
        "beneficiaries": [
            {"last_name": "Dela Cruz", "first_name": "Juan", "amount": "20000.00"},
        ]
    }, headers=auth(HEI_USER))
    assert resp.status_code == 200, resp.text
    return resp.json()


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["checks"]["db"] == "ok"


async def test_full_tes_workflow(client):
    draft = await _create_draft(client)
    lid = draft["id"]
    assert draft["status"] == "draft"
    assert draft["control_no"].startswith("TES-")
    assert draft["allowed_operations"] == ["submit_for_review"]

    after_import = await _add_beneficiary(client, lid)
    assert float(after_import["financial"]["amount_liquidated"]) == 20000.0

    resp = await client.post(f"{BASE}/{lid}/submit", json={}, headers=auth(HEI_USER))
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "for_initial_review"

    resp = await client.post(f"{BASE}/{lid}/return-to-hei", json={
        "remarks": "Missing payroll",
        "documents_for_compliance": "Signed payroll",
    }, headers=auth(RC_NCR))
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["status"] == "returned_to_hei"
    assert len(body["compliance"]) == 1

    resp = await client.post(f"{BASE}/{lid}/submit", json={"remarks": "Attached"}, headers=auth(HEI_USER))
    assert resp.json()["status"] == "for_initial_review"

    ref = f"TR-{uuid.uuid4().hex[:10]}"
    resp = await client.post(f"{BASE}/{lid}/endorse-to-accounting", json={
        "transmittal_reference_no": ref,
        "document_location": "Records Section",
        "remarks": "Complete",
    }, headers=auth(RC_NCR))
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["status"] == "endorsed_to_accounting"
    assert body["transmittals"][-1]["current_location"] == "Records Section"

    resp = await client.post(f"{BASE}/{lid}/return-to-rc", json={"remarks": "Recheck ORs"},
                             headers=auth(ACCOUNTANT))
    assert resp.json()["status"] == "returned_to_rc"

    resp = await client.post(f"{BASE}/{lid}/endorse-to-accounting", json={
        "transmittal_reference_no": f"{ref}-2",
    }, headers=auth(RC_NCR))
    assert resp.json()["status"] == "endorsed_to_accounting"

    resp = await client.post(f"{BASE}/{lid}/endorse-to-coa", json={}, headers=auth(ACCOUNTANT))
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["status"] == "endorsed_to_coa"
    assert body["allowed_operations"] == []

    # rc_return, hei_resubmission, rc_endorsement, accountant_return
    reviews = (await client.get(f"{BASE}/{lid}/reviews", headers=auth(ACCOUNTANT))).json()
    assert [r["review_type"] for r in reviews] == [
        "rc_return", "hei_resubmission", "rc_endorsement", "accountant_return",
    ]
    assert len(body["transmittals"]) == 2

    # terminal
    resp = await client.post(f"{BASE}/{lid}/return-to-rc", json={"remarks": "late"},
                             headers=auth(ACCOUNTANT))
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "INVALID_STATE"


async def test_submit_without_beneficiaries(client):
    draft = await _create_draft(client)
    resp = await client.post(f"{BASE}/{draft['id']}/submit", json={}, headers=auth(HEI_USER))
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_rc_from_other_region_cannot_review(client):
    draft = await _create_draft(client)
    await _add_beneficiary(client, draft["id"])
    await client.post(f"{BASE}/{draft['id']}/submit", json={}, headers=auth(HEI_USER))

    resp = await client.post(f"{BASE}/{draft['id']}/return-to-hei", json={"remarks": "x"},
                             headers=auth(RC_III))
    assert resp.status_code == 403

    resp = await client.get(f"{BASE}/{draft['id']}", headers=auth(RC_III))
    assert resp.status_code == 403


async def test_unknown_liquidation_is_404(client):
    resp = await client.post(f"{BASE}/{uuid.uuid4()}/endorse-to-coa", json={}, headers=auth(ACCOUNTANT))
    assert resp.status_code == 404


async def test_concurrent_reviewers_only_one_wins(client):
    draft = await _create_draft(client)
    lid = draft["id"]
    await _add_beneficiary(client, lid)
    await client.post(f"{BASE}/{lid}/submit", json={}, headers=auth(HEI_USER))
    await client.post(f"{BASE}/{lid}/endorse-to-accounting", json={
        "transmittal_reference_no": f"TR-{random.randint(10**6, 10**7)}-{uuid.uuid4().hex[:6]}",
    }, headers=auth(RC_NCR))

    async def endorse():
        return (await client.post(f"{BASE}/{lid}/endorse-to-coa", json={}, headers=auth(ACCOUNTANT))).status_code

    async def send_back():
        return (await client.post(f"{BASE}/{lid}/return-to-rc", json={"remarks": "race"},
                                  headers=auth(ACCOUNTANT))).status_code

    results = await asyncio.gather(endorse(), send_back(), endorse())
    assert results.count(200) == 1
    assert all(code == 409 for code in results if code != 200)


async def test_concurrent_creates_get_distinct_control_numbers(client):
    drafts = await asyncio.gather(*[_create_draft(client) for _ in range(5)])
    numbers = [d["control_no"] for d in drafts]
    assert len(set(numbers)) == 5
