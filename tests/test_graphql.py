"""
End-to-end tests through the FastAPI app: GraphQL API and the Stripe webhook
"""
import hashlib
import hmac
import json
import time

import httpx
import pytest

from app.auth.jwt import STAFF_ROLE, create_access_token
from app.main import create_app


@pytest.fixture
def app(settings, session_factory, provider):
    return create_app(settings=settings, session_factory=session_factory, provider=provider)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def _headers(settings, member_id, roles=None):
    token = create_access_token({"member_id": member_id, "roles": roles or []}, settings)
    return {"x-access-token": token}


async def _graphql(client, query, headers=None, variables=None):
    response = await client.post(
        "/graphql",
        json={"query": query, "variables": variables or {}},
        headers=headers or {},
    )
    assert response.status_code == 200
    return response.json()


CHARGE = """
mutation Charge($amount: Int!, $memberId: Int) {
  charge(input: {amount: $amount, memberId: $memberId}) {
    success
    errorCode
    message
    balance { credits creditsUsed remaining }
  }
}
"""


@pytest.mark.asyncio
async def test_charge_and_balance(client, settings, seed):
    member_id = await seed.member("Standard")
    headers = _headers(settings, member_id)

    charged = await _graphql(client, CHARGE, headers, {"amount": 3})
    assert charged["data"]["charge"]["success"] is True
    assert charged["data"]["charge"]["balance"] == {"credits": 10, "creditsUsed": 3, "remaining": 7}

    balance = await _graphql(client, "{ creditBalance { success balance { remaining } } }", headers)
    assert balance["data"]["creditBalance"]["balance"]["remaining"] == 7


@pytest.mark.asyncio
async def test_insufficient_credits_is_typed(client, settings, seed):
    member_id = await seed.member("Trial", credits_used=4)

    result = await _graphql(client, CHARGE, _headers(settings, member_id), {"amount": 2})

    assert result["data"]["charge"]["success"] is False
    assert result["data"]["charge"]["errorCode"] == "INSUFFICIENT_CREDITS"


@pytest.mark.asyncio
async def test_invalid_amount(client, settings, seed):
    member_id = await seed.member("Standard")

    result = await _graphql(client, CHARGE, _headers(settings, member_id), {"amount": 0})

    assert result["data"]["charge"]["errorCode"] == "INVALID_ARGUMENT"


@pytest.mark.asyncio
async def test_member_cannot_act_for_another_member(client, settings, seed):
    member_id = await seed.member("Standard")
    other_id = await seed.member("Standard")

    result = await _graphql(client, CHARGE, _headers(settings, member_id), {"amount": 1, "memberId": other_id})

    assert result["data"]["charge"]["errorCode"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_staff_can_act_for_another_member(client, settings, seed):
    staff_id = await seed.member("Standard")
    other_id = await seed.member("Standard")

    result = await _graphql(
        client, CHARGE, _headers(settings, staff_id, [STAFF_ROLE]), {"amount": 1, "memberId": other_id}
    )

    assert result["data"]["charge"]["success"] is True


REFUND = """
mutation Refund($amount: Int!, $memberId: Int) {
  refund(input: {amount: $amount, memberId: $memberId}) {
    success
    errorCode
    balance { creditsUsed remaining }
  }
}
"""


@pytest.mark.asyncio
async def test_member_cannot_refund_own_credits(client, settings, seed):
    member_id = await seed.member("Standard", credits_used=8)

    result = await _graphql(client, REFUND, _headers(settings, member_id), {"amount": 8})

    assert result["data"]["refund"] == {"success": False, "errorCode": "FORBIDDEN", "balance": None}
    balance = await _graphql(client, "{ creditBalance { balance { creditsUsed } } }", _headers(settings, member_id))
    assert balance["data"]["creditBalance"]["balance"]["creditsUsed"] == 8


@pytest.mark.asyncio
async def test_staff_can_refund_member(client, settings, seed):
    staff_id = await seed.member("Standard")
    member_id = await seed.member("Standard", credits_used=8)

    result = await _graphql(
        client, REFUND, _headers(settings, staff_id, [STAFF_ROLE]), {"amount": 3, "memberId": member_id}
    )

    assert result["data"]["refund"]["success"] is True
    assert result["data"]["refund"]["balance"] == {"creditsUsed": 5, "remaining": 5}


@pytest.mark.asyncio
async def test_requires_authentication(client, seed):
    result = await _graphql(client, CHARGE, variables={"amount": 1})

    assert result["data"] is None
    assert result["errors"][0]["message"] == "Authentication required."


@pytest.mark.asyncio
async def test_booking_flow(client, settings, seed):
    member_id = await seed.member("Standard")
    gym_id = await seed.gym()
    headers = _headers(settings, member_id)

    booked = await _graphql(
        client,
        """
        mutation Book($gymId: Int!) {
          bookDirectVisit(input: {gymId: $gymId}) {
            success errorCode booking { id status creditsUsed gymName }
          }
        }
        """,
        headers,
        {"gymId": gym_id},
    )
    booking = booked["data"]["bookDirectVisit"]["booking"]
    assert booking["status"] == "confirmed"
    assert booking["gymName"] == "Test Gym"

    check_in = await _graphql(
        client,
        "query Pass($id: Int!) { checkInPass(bookingId: $id) { success checkInPass { isValid } } }",
        headers,
        {"id": booking["id"]},
    )
    assert check_in["data"]["checkInPass"]["checkInPass"]["isValid"] is True

    cancelled = await _graphql(
        client,
        "mutation Cancel($id: Int!) { cancelBooking(bookingId: $id) { success refundedCredits } }",
        headers,
        {"id": booking["id"]},
    )
    assert cancelled["data"]["cancelBooking"] == {"success": True, "refundedCredits": 1}


@pytest.mark.asyncio
async def test_other_member_cannot_cancel_booking(client, settings, seed):
    owner_id = await seed.member("Standard")
    intruder_id = await seed.member("Standard")
    gym_id = await seed.gym()
    booked = await _graphql(
        client,
        "mutation Book($gymId: Int!) { bookDirectVisit(input: {gymId: $gymId}) { booking { id } } }",
        _headers(settings, owner_id),
        {"gymId": gym_id},
    )
    booking_id = booked["data"]["bookDirectVisit"]["booking"]["id"]

    result = await _graphql(
        client,
        "mutation Cancel($id: Int!) { cancelBooking(bookingId: $id) { success errorCode } }",
        _headers(settings, intruder_id),
        {"id": booking_id},
    )

    assert result["data"]["cancelBooking"] == {"success": False, "errorCode": "FORBIDDEN"}


@pytest.mark.asyncio
async def test_gym_selection_flow(client, settings, seed):
    member_id = await seed.member("Daily Access")
    gym_id = await seed.gym()
    headers = _headers(settings, member_id)

    added = await _graphql(
        client,
        "mutation Add($gymId: Int!) { addGym(input: {gymId: $gymId}) { success selection { status } } }",
        headers,
        {"gymId": gym_id},
    )
    assert added["data"]["addGym"]["selection"]["status"] == "pending"

    listed = await _graphql(
        client,
        "{ gymSelections { success selections { maxSlots pending { gymId } current { gymId } } } }",
        headers,
    )
    selections = listed["data"]["gymSelections"]["selections"]
    assert selections["maxSlots"] == 3
    assert selections["pending"] == [{"gymId": gym_id}]
    assert selections["current"] == []


@pytest.mark.asyncio
async def test_schedule_plan_change(client, settings, seed):
    member_id = await seed.member("Standard", subscription_id="sub_1")
    premium = seed.plans["Premium"]

    result = await _graphql(
        client,
        """
        mutation Change($planId: Int!) {
          schedulePlanChange(input: {planId: $planId}) {
            success errorCode
            planChange { status planId scheduledChange { confirmed scheduledPlanTitle } }
          }
        }
        """,
        _headers(settings, member_id),
        {"planId": premium},
    )

    change = result["data"]["schedulePlanChange"]["planChange"]
    assert change["status"] == "scheduled"
    assert change["planId"] == premium
    assert change["scheduledChange"] == {"confirmed": True, "scheduledPlanTitle": "Premium"}

    membership = await _graphql(
        client,
        "{ membership { membership { planTitle scheduledChange { confirmed } } } }",
        _headers(settings, member_id),
    )
    assert membership["data"]["membership"]["membership"]["planTitle"] == "Standard"


@pytest.mark.asyncio
async def test_sync_all_requires_staff(client, settings, seed):
    member_id = await seed.member("Standard", subscription_id="sub_1")

    denied = await _graphql(client, "mutation { syncAll { success } }", _headers(settings, member_id))
    assert denied["errors"][0]["message"] == "Staff role required."

    allowed = await _graphql(
        client,
        "mutation { syncAll { success summary { unchanged processedMemberIds } } }",
        _headers(settings, member_id, [STAFF_ROLE]),
    )
    assert allowed["data"]["syncAll"] == {
        "success": True,
        "summary": {"unchanged": 1, "processedMemberIds": [member_id]},
    }


def _signed(payload: dict, secret: str):
    body = json.dumps(payload)
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{body}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return body, {"stripe-signature": f"t={timestamp},v1={signature}", "content-type": "application/json"}


@pytest.mark.asyncio
async def test_webhook_syncs_member(app, client, settings, seed, provider):
    member_id = await seed.member("Standard", subscription_id="sub_1", credits_used=5)
    provider.advance_period("sub_1")
    body, headers = _signed({
        "id": "evt_1",
        "type": "invoice.paid",
        "data": {"object": {"id": "in_1", "subscription": "sub_1"}},
    }, settings.stripe_webhook_secret)

    response = await client.post("/stripe/webhook", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["synced"] is True
    balance = await app.state.services.ledger.get_balance(member_id)
    assert balance.value.credits_used == 0


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(client, seed):
    body, headers = _signed({"id": "evt_2", "type": "invoice.paid", "data": {"object": {}}}, "whsec_wrong")

    response = await client.post("/stripe/webhook", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["ok"] is False


@pytest.mark.asyncio
async def test_webhook_ignores_unrelated_events(client, settings):
    body, headers = _signed(
        {"id": "evt_3", "type": "charge.refunded", "data": {"object": {"id": "ch_1"}}},
        settings.stripe_webhook_secret,
    )

    response = await client.post("/stripe/webhook", content=body, headers=headers)

    assert response.json() == {"ok": True, "received": True, "event_type": "charge.refunded", "synced": False}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.json() == {"status": "ok"}
