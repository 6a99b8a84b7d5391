from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from settlement.models import EscrowHold, HoldStatus
from settlement.utils.time import ensure_utc, utcnow

pytestmark = pytest.mark.anyio("asyncio")


def _engagement_payload(**overrides):
    payload = {
        "external_ref": "ENG-2026-0042",
        "client_id": "client-1",
        "practitioner_id": "practitioner-1",
        "firm_id": None,
        "amount": "10000.00",
        "currency": "INR",
        "delivered_at": utcnow().isoformat(),
    }
    payload.update(overrides)
    return payload


async def _engagement(client, admin_headers, **overrides) -> int:
    response = await client.post("/engagements", json=_engagement_payload(**overrides), headers=admin_headers)
    assert response.status_code == 200, response.text
    return response.json()["id"]


async def test_engagement_upsert_is_idempotent(client, db_session, admin_headers, arbiter_headers):
    first = await _engagement(client, admin_headers)
    second = await _engagement(client, admin_headers, firm_id="firm-9")
    assert first == second

    response = await client.get(f"/engagements/{first}", headers=arbiter_headers)
    assert response.status_code == 200
    assert response.json()["firm_id"] == "firm-9"


async def test_engagement_rejects_same_principal_on_both_sides(client, db_session, admin_headers):
    response = await client.post(
        "/engagements",
        json=_engagement_payload(practitioner_id="client-1"),
        headers=admin_headers,
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_engagement_ingestion_is_admin_only(client, db_session, client_headers):
    response = await client.post("/engagements", json=_engagement_payload(), headers=client_headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "INSUFFICIENT_SCOPE"


async def test_create_hold_and_read_back(client, db_session, admin_headers, client_headers, practitioner_headers):
    engagement_id = await _engagement(client, admin_headers)

    response = await client.post(
        "/holds",
        json={"engagement_id": engagement_id, "auto_release_days": 3},
        headers=admin_headers,
    )
    assert response.status_code == 201, response.text
    hold = response.json()
    assert hold["status"] == "held"
    assert Decimal(hold["amount"]) == Decimal("10000.00")
    assert hold["distribution"] is None

    for headers in (client_headers, practitioner_headers):
        response = await client.get(f"/holds/{hold['id']}", headers=headers)
        assert response.status_code == 200
        assert response.json()["id"] == hold["id"]


async def test_second_hold_is_a_duplicate(client, db_session, admin_headers):
    engagement_id = await _engagement(client, admin_headers)
    assert (await client.post("/holds", json={"engagement_id": engagement_id}, headers=admin_headers)).status_code == 201

    response = await client.post("/holds", json={"engagement_id": engagement_id}, headers=admin_headers)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "DUPLICATE_HOLD"


async def test_hold_for_undelivered_engagement(client, db_session, admin_headers):
    engagement_id = await _engagement(client, admin_headers, delivered_at=None)
    response = await client.post("/holds", json={"engagement_id": engagement_id}, headers=admin_headers)
    assert response.status_code == 422


async def test_hold_for_unknown_engagement(client, db_session, admin_headers):
    response = await client.post("/holds", json={"engagement_id": 999}, headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "ENGAGEMENT_NOT_FOUND"


async def test_outsider_cannot_read_hold(client, db_session, make_hold, make_api_key):
    from settlement.models.api_key import ApiScope

    hold = make_hold()
    outsider = make_api_key(ApiScope.party, "someone-else")

    response = await client.get(f"/holds/{hold.id}", headers=outsider)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


async def test_unknown_hold(client, db_session, arbiter_headers):
    response = await client.get("/holds/12345", headers=arbiter_headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "HOLD_NOT_FOUND"


async def test_arm_and_disarm_auto_release(client, db_session, make_hold, admin_headers):
    hold = make_hold()

    response = await client.post(f"/holds/{hold.id}/auto-release/disarm", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["auto_release_at"] is None

    response = await client.post(f"/holds/{hold.id}/auto-release/arm", json={"hours": 2}, headers=admin_headers)
    assert response.status_code == 200
    db_session.expire_all()
    deadline = ensure_utc(db_session.get(EscrowHold, hold.id).auto_release_at)
    assert utcnow() + timedelta(hours=1) < deadline <= utcnow() + timedelta(hours=2)


async def test_sweep_endpoint_releases_due_holds(client, db_session, make_hold, admin_headers, client_headers):
    due = make_hold(now=utcnow() - timedelta(days=8))
    make_hold()

    response = await client.post("/holds/auto-release/sweep", headers=admin_headers)
    assert response.status_code == 200
    assert response.json() == {"released": 1, "hold_ids": [due.id]}

    response = await client.get(f"/holds/{due.id}", headers=client_headers)
    body = response.json()
    assert body["status"] == "released"
    distribution = body["distribution"]
    assert distribution["is_auto_release"] is True
    assert Decimal(distribution["practitioner_net_amount"]) == Decimal("7650.00")
    assert Decimal(body["distributed_amount"]) == Decimal("10000.00")
    assert {payout["payee_kind"] for payout in distribution["payouts"]} == {"practitioner", "tax_withholding"}

    response = await client.post("/holds/auto-release/sweep", json={"limit": 10}, headers=admin_headers)
    assert response.json() == {"released": 0, "hold_ids": []}


async def test_sweep_is_admin_only(client, db_session, arbiter_headers):
    response = await client.post("/holds/auto-release/sweep", headers=arbiter_headers)
    assert response.status_code == 403


async def test_disarm_requires_held_hold(client, db_session, make_hold, admin_headers):
    hold = make_hold(now=utcnow() - timedelta(days=8))
    await client.post("/holds/auto-release/sweep", headers=admin_headers)

    response = await client.post(f"/holds/{hold.id}/auto-release/disarm", headers=admin_headers)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_HOLD_STATE"
    statuses = set(db_session.scalars(select(EscrowHold.status)))
    assert statuses == {HoldStatus.RELEASED}


async def test_release_endpoint(client, db_session, make_hold, practitioner_headers, client_headers):
    hold = make_hold()

    response = await client.post(f"/holds/{hold.id}/release", headers=client_headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "UNAUTHORIZED"

    response = await client.post(f"/holds/{hold.id}/release", headers=practitioner_headers)
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["status"] == "released"
    assert body["auto_release_at"] is None
    distribution = body["distribution"]
    assert distribution["is_auto_release"] is False
    assert Decimal(distribution["withholding_tax_percent"]) == Decimal("10.00")
    assert Decimal(distribution["withholding_threshold"]) == Decimal("0.00")

    response = await client.post(f"/holds/{hold.id}/release", headers=practitioner_headers)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_HOLD_STATE"


async def test_release_endpoint_rejects_disputed_hold(client, db_session, make_hold, admin_headers, client_headers):
    hold = make_hold()
    response = await client.post(
        f"/holds/{hold.id}/disputes",
        json={"reason": "The delivered report is missing the agreed annexures."},
        headers=client_headers,
    )
    assert response.status_code == 201, response.text

    response = await client.post(f"/holds/{hold.id}/release", headers=admin_headers)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_HOLD_STATE"
    db_session.expire_all()
    assert db_session.get(EscrowHold, hold.id).status == HoldStatus.DISPUTED


async def test_hold_history_endpoint(client, db_session, make_hold, admin_headers, practitioner_headers):
    hold = make_hold()
    await client.post(f"/holds/{hold.id}/release", headers=practitioner_headers)

    response = await client.get(f"/holds/{hold.id}/audit", headers=admin_headers)
    assert response.status_code == 200
    entries = response.json()
    assert [entry["action"] for entry in entries] == ["HOLD_CREATED", "HOLD_RELEASED"]
    assert entries[1]["actor"] == "party:practitioner-1"
    assert entries[1]["data_json"]["outcome"] == "release"

    response = await client.get(f"/holds/{hold.id}/audit", headers=practitioner_headers)
    assert response.status_code == 403
