"""
Tests for the keep-in-touch API.

Covers request validation and the mapping of service errors to HTTP codes.
"""
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from keepintouch.db.models import KitActivityLog


SEQUENCE = [
    {"method": "call", "interval_days": 0},
    {"method": "whatsapp", "interval_days": 3},
    {"method": "call", "interval_days": 7},
]


async def _create_preset(client: AsyncClient, **overrides) -> dict:
    payload = {"name": "Warm lead", "touch_sequence": SEQUENCE, "default_cycle_behavior": "one_time"}
    payload.update(overrides)
    res = await client.post("/kit/presets", json=payload)
    assert res.status_code == 201, res.text
    return res.json()


async def _activate(client: AsyncClient, **overrides) -> dict:
    payload = {
        "entity_type": "lead",
        "entity_id": str(uuid.uuid4()),
        "custom_sequence": SEQUENCE,
        "cycle_behavior": "user_defined",
        "assigned_to": "owner@example.com",
    }
    payload.update(overrides)
    res = await client.post("/kit/subscriptions", json=payload)
    assert res.status_code == 201, res.text
    return res.json()


# =============================================================================
# Presets
# =============================================================================

@pytest.mark.asyncio
async def test_create_and_list_presets(client: AsyncClient):
    preset = await _create_preset(client)

    assert preset["total_cycle_days"] == 10
    assert preset["created_by"] == "manager@example.com"

    res = await client.get("/kit/presets", params={"active_only": True})
    assert res.status_code == 200
    assert [p["id"] for p in res.json()] == [preset["id"]]


@pytest.mark.asyncio
async def test_create_preset_negative_interval_returns_422(client: AsyncClient):
    res = await client.post(
        "/kit/presets",
        json={"name": "Bad", "touch_sequence": [{"method": "call", "interval_days": -1}]},
    )
    assert res.status_code == 422
    assert res.json()["error"] == "InvalidIntervalError"


@pytest.mark.asyncio
async def test_create_preset_empty_sequence_returns_422(client: AsyncClient):
    res = await client.post("/kit/presets", json={"name": "Empty", "touch_sequence": []})
    assert res.status_code == 422


@pytest.mark.asyncio
async def test_update_and_delete_preset(client: AsyncClient):
    preset = await _create_preset(client)

    res = await client.patch(f"/kit/presets/{preset['id']}", json={"is_active": False})
    assert res.status_code == 200
    assert res.json()["is_active"] is False

    res = await client.delete(f"/kit/presets/{preset['id']}")
    assert res.status_code == 204

    res = await client.get(f"/kit/presets/{preset['id']}")
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_list_outcomes(client: AsyncClient):
    res = await client.get("/kit/outcomes")
    assert res.status_code == 200
    by_value = {o["value"]: o for o in res.json()}
    assert by_value["not_reachable"]["requires_followup"] is True
    assert by_value["connected"]["is_positive"] is True


# =============================================================================
# Subscriptions
# =============================================================================

@pytest.mark.asyncio
async def test_activate_subscription(client: AsyncClient, db):
    body = await _activate(client)

    assert body["subscription"]["status"] == "active"
    assert body["subscription"]["cycle_count"] == 1
    assert [t["sequence_index"] for t in body["touches"]] == [0, 1, 2]
    assert body["side_effects"][0]["ok"] is True

    log = db.execute(select(KitActivityLog)).scalars().first()
    assert log.actor == "manager@example.com"


@pytest.mark.asyncio
async def test_activate_from_preset(client: AsyncClient):
    preset = await _create_preset(client)
    body = await _activate(client, preset_id=preset["id"], custom_sequence=None, cycle_behavior=None)

    assert body["subscription"]["preset_id"] == preset["id"]
    assert body["subscription"]["cycle_behavior"] == "one_time"


@pytest.mark.asyncio
async def test_activate_unknown_preset_returns_404(client: AsyncClient):
    res = await client.post(
        "/kit/subscriptions",
        json={
            "entity_type": "customer",
            "entity_id": str(uuid.uuid4()),
            "preset_id": str(uuid.uuid4()),
            "assigned_to": "owner@example.com",
        },
    )
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_activate_missing_assignee_returns_422(client: AsyncClient):
    res = await client.post(
        "/kit/subscriptions",
        json={
            "entity_type": "lead",
            "entity_id": str(uuid.uuid4()),
            "custom_sequence": SEQUENCE,
            "assigned_to": "",
        },
    )
    assert res.status_code == 422
    assert res.json()["error"] == "MissingAssigneeError"


@pytest.mark.asyncio
async def test_activate_twice_for_entity_returns_409(client: AsyncClient):
    body = await _activate(client)
    entity_id = body["subscription"]["entity_id"]

    res = await client.post(
        "/kit/subscriptions",
        json={
            "entity_type": "lead",
            "entity_id": entity_id,
            "custom_sequence": SEQUENCE,
            "assigned_to": "owner@example.com",
        },
    )
    assert res.status_code == 409

    res = await client.get(f"/kit/entities/lead/{entity_id}/subscription")
    assert res.status_code == 200
    assert res.json()["id"] == body["subscription"]["id"]


@pytest.mark.asyncio
async def test_pause_resume_cancel_flow(client: AsyncClient):
    sub_id = (await _activate(client))["subscription"]["id"]

    res = await client.post(f"/kit/subscriptions/{sub_id}/pause", json={"pause_reason": "holiday"})
    assert res.status_code == 200
    assert res.json()["subscription"]["status"] == "paused"

    res = await client.post(f"/kit/subscriptions/{sub_id}/pause", json={})
    assert res.status_code == 409

    res = await client.post(f"/kit/subscriptions/{sub_id}/resume", json={"shift_overdue": False})
    assert res.status_code == 200
    assert res.json()["subscription"]["status"] == "active"

    res = await client.post(f"/kit/subscriptions/{sub_id}/cancel")
    assert res.status_code == 200
    assert res.json()["subscription"]["status"] == "cancelled"

    res = await client.post(f"/kit/subscriptions/{sub_id}/complete")
    assert res.status_code == 409


@pytest.mark.asyncio
async def test_repeat_with_pending_touches_returns_409(client: AsyncClient):
    sub_id = (await _activate(client))["subscription"]["id"]

    res = await client.post(f"/kit/subscriptions/{sub_id}/repeat", json={})
    assert res.status_code == 409

    res = await client.post(f"/kit/subscriptions/{sub_id}/repeat", json={"force": True})
    assert res.status_code == 200
    assert res.json()["subscription"]["cycle_count"] == 2
    assert len(res.json()["touches"]) == 3


@pytest.mark.asyncio
async def test_unknown_subscription_returns_404(client: AsyncClient):
    res = await client.get(f"/kit/subscriptions/{uuid.uuid4()}")
    assert res.status_code == 404
    res = await client.post(f"/kit/subscriptions/{uuid.uuid4()}/cancel")
    assert res.status_code == 404


# =============================================================================
# Touches
# =============================================================================

@pytest.mark.asyncio
async def test_complete_and_skip_touches(client: AsyncClient):
    body = await _activate(client)
    sub_id = body["subscription"]["id"]
    first, second, third = (t["id"] for t in body["touches"])

    res = await client.post(f"/kit/touches/{first}/complete", json={"outcome": "connected"})
    assert res.status_code == 200
    assert res.json()["touch"]["status"] == "completed"
    assert res.json()["cycle"]["cycle_complete"] is False

    res = await client.post(f"/kit/touches/{first}/skip")
    assert res.status_code == 409

    await client.post(f"/kit/touches/{second}/skip")
    res = await client.post(f"/kit/touches/{third}/skip")
    assert res.json()["cycle"] == {
        "cycle_complete": True,
        "behavior": "user_defined",
        "action": "awaiting_decision",
        "cycle_count": 1,
    }

    res = await client.get(f"/kit/subscriptions/{sub_id}/touches", params={"cycle": 1})
    assert [t["status"] for t in res.json()] == ["completed", "skipped", "skipped"]


@pytest.mark.asyncio
async def test_complete_with_snooze_follow_up(client: AsyncClient):
    touch_id = (await _activate(client))["touches"][0]["id"]

    res = await client.post(
        f"/kit/touches/{touch_id}/complete",
        json={
            "outcome": "not_reachable",
            "follow_up": {"action": "snooze", "until": "2030-01-15T14:00:00Z"},
        },
    )
    assert res.status_code == 200, res.text
    touch = res.json()["touch"]
    assert touch["status"] == "pending"
    assert touch["scheduled_date"] == "2030-01-15"
    assert touch["outcome"] is None
    assert res.json()["cycle"] is None


@pytest.mark.asyncio
async def test_follow_up_without_target_returns_422(client: AsyncClient):
    touch_id = (await _activate(client))["touches"][0]["id"]
    res = await client.post(
        f"/kit/touches/{touch_id}/complete",
        json={"outcome": "callback", "follow_up": {"action": "reschedule"}},
    )
    assert res.status_code == 422


@pytest.mark.asyncio
async def test_snooze_with_unknown_option_returns_422(client: AsyncClient):
    touch_id = (await _activate(client))["touches"][0]["id"]
    res = await client.post(f"/kit/touches/{touch_id}/snooze", json={"snooze_option": "forever"})
    assert res.status_code == 422


@pytest.mark.asyncio
async def test_reschedule_reassign_edit(client: AsyncClient):
    touch_id = (await _activate(client))["touches"][1]["id"]

    res = await client.post(f"/kit/touches/{touch_id}/reschedule", json={"new_date": "2030-02-01"})
    assert res.status_code == 200
    assert res.json()["touch"]["reschedule_count"] == 1

    res = await client.post(f"/kit/touches/{touch_id}/reassign", json={"assigned_to": "rep@example.com"})
    assert res.json()["touch"]["assigned_to"] == "rep@example.com"

    res = await client.patch(f"/kit/touches/{touch_id}", json={"method": "visit", "scheduled_time": "09:30"})
    assert res.status_code == 200
    assert res.json()["touch"]["method"] == "visit"
    assert res.json()["touch"]["scheduled_time"] == "09:30:00"


@pytest.mark.asyncio
async def test_add_touch_with_task(client: AsyncClient, tasks):
    sub_id = (await _activate(client))["subscription"]["id"]

    res = await client.post(
        f"/kit/subscriptions/{sub_id}/touches",
        json={
            "method": "meeting",
            "scheduled_date": "2030-03-01",
            "assigned_to": "rep@example.com",
            "create_task": True,
        },
    )
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["touch"]["sequence_index"] == 3
    assert body["touch"]["linked_task_id"] == "task-1"
    assert any(s["name"] == "task:create" and s["value"] == "task-1" for s in body["side_effects"])
    assert len(tasks.created) == 1


@pytest.mark.asyncio
async def test_unknown_touch_returns_404(client: AsyncClient):
    res = await client.get(f"/kit/touches/{uuid.uuid4()}")
    assert res.status_code == 404
    res = await client.post(f"/kit/touches/{uuid.uuid4()}/skip")
    assert res.status_code == 404


# =============================================================================
# Dashboard
# =============================================================================

@pytest.mark.asyncio
async def test_dashboard(client: AsyncClient):
    await _activate(client)

    res = await client.get("/kit/dashboard", params={"limit": 1})
    assert res.status_code == 200
    body = res.json()
    assert body["today_count"] == 1
    assert body["upcoming_count"] == 2
    assert len(body["upcoming"]) == 1
    assert body["due_now"][0]["due_state"] == "due_today"
