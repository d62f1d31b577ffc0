"""HTTP API tests for notifications, preferences and templates."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
import uuid

from httpx import AsyncClient
import pytest

API = "/api/v1/notifications"


def _send_body(**overrides) -> dict:
    body = {
        "user_id": "u1",
        "user_type": "driver",
        "kind": "payment",
        "data": {"amount": 10},
        "recipient": {"email": "u1@example.com"},
    }
    body.update(overrides)
    return body


# ============================================================================
# Notifications
# ============================================================================


@pytest.mark.asyncio
async def test_send_and_read_back(client: AsyncClient) -> None:
    response = await client.post(f"{API}/send", json=_send_body(channels=["email", "in_app"]))

    assert response.status_code == 201
    body = response.json()
    assert body["succeeded"] is True
    assert body["outcomes"] == {"email": "sent", "in_app": "sent"}
    notification_id = body["notification"]["id"]

    fetched = await client.get(f"{API}/{notification_id}")
    assert fetched.status_code == 200
    assert fetched.json()["status"] == "sent"

    listing = await client.get(API, params={"user_id": "u1"})
    assert listing.status_code == 200
    assert listing.json()["total"] == 1
    assert listing.json()["unread_count"] == 1


@pytest.mark.asyncio
async def test_request_validation_is_problem_details(client: AsyncClient) -> None:
    response = await client.post(f"{API}/send", json={"user_id": "u1", "kind": "weather"})

    assert response.status_code == 422
    body = response.json()
    assert body["type"] == "validation-error"
    assert body["status"] == 422


@pytest.mark.asyncio
async def test_unknown_notification_is_404(client: AsyncClient) -> None:
    response = await client.get(f"{API}/{uuid.uuid4()}")

    assert response.status_code == 404
    body = response.json()
    assert body["type"] == "notification-not-found"
    assert body["title"] == "Not Found"


@pytest.mark.asyncio
async def test_schedule_then_cancel_twice(client: AsyncClient) -> None:
    scheduled_for = (datetime.now(UTC) + timedelta(hours=1)).isoformat()
    response = await client.post(f"{API}/schedule", json=_send_body(scheduled_for=scheduled_for))
    assert response.status_code == 201
    notification_id = response.json()["id"]
    assert response.json()["status"] == "pending"

    cancelled = await client.post(f"{API}/{notification_id}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    again = await client.post(f"{API}/{notification_id}/cancel")
    assert again.status_code == 409
    assert again.json()["type"] == "invalid-notification-state"


@pytest.mark.asyncio
async def test_schedule_in_the_past_is_rejected(client: AsyncClient) -> None:
    scheduled_for = (datetime.now(UTC) - timedelta(minutes=5)).isoformat()
    response = await client.post(f"{API}/schedule", json=_send_body(scheduled_for=scheduled_for))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_read_state_endpoints(client: AsyncClient) -> None:
    ids = []
    for _ in range(2):
        response = await client.post(API, json={"user_id": "u1", "user_type": "driver", "kind": "achievement"})
        assert response.status_code == 201
        ids.append(response.json()["id"])

    marked = await client.post(f"{API}/{ids[0]}/mark-read")
    assert marked.json()["read"] is True

    count = await client.get(f"{API}/unread-count", params={"user_id": "u1"})
    assert count.json() == {"user_id": "u1", "count": 1}

    all_read = await client.post(f"{API}/mark-all-read", params={"user_id": "u1"})
    assert all_read.json() == {"user_id": "u1", "updated": 1}

    deleted = await client.delete(f"{API}/{ids[1]}")
    assert deleted.status_code == 204


@pytest.mark.asyncio
async def test_bulk_send(client: AsyncClient) -> None:
    response = await client.post(
        f"{API}/send-bulk",
        json={
            "kind": "load_opportunity",
            "channels": ["in_app"],
            "recipients": [
                {"user_id": "u1", "user_type": "driver"},
                {"user_id": "u2", "user_type": "driver"},
            ],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success_count"] == 2
    assert len(body["notification_ids"]) == 2


@pytest.mark.asyncio
async def test_statistics(client: AsyncClient) -> None:
    await client.post(f"{API}/send", json=_send_body(channels=["in_app"]))

    response = await client.get(f"{API}/statistics")

    assert response.status_code == 200
    assert response.json()["total"] == 1
    assert response.json()["by_status"] == {"sent": 1}


# ============================================================================
# Preferences
# ============================================================================


@pytest.mark.asyncio
async def test_preference_lifecycle(client: AsyncClient) -> None:
    created = await client.post(
        f"{API}/preferences",
        json={"user_id": "u1", "user_type": "driver", "kind": "payment", "channels": ["email"]},
    )
    assert created.status_code == 201
    preference_id = created.json()["id"]

    window = await client.patch(
        f"{API}/preferences/time-window",
        json={
            "user_id": "u1",
            "user_type": "driver",
            "kind": "payment",
            "time_window": {"start": "22:00", "end": "06:00", "timezone": "UTC"},
        },
    )
    assert window.json()["time_window"]["start"] == "22:00"

    listing = await client.get(f"{API}/preferences", params={"user_id": "u1"})
    assert listing.json()["total"] == 1

    deleted = await client.delete(f"{API}/preferences/{preference_id}")
    assert deleted.status_code == 204
    missing = await client.get(f"{API}/preferences/{preference_id}")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_preference_defaults(client: AsyncClient) -> None:
    response = await client.post(f"{API}/preferences/defaults", json={"user_id": "u1", "user_type": "driver"})
    assert response.json()["total"] == 8


# ============================================================================
# Templates
# ============================================================================


@pytest.mark.asyncio
async def test_template_create_render_and_conflict(client: AsyncClient) -> None:
    body = {
        "name": "payment.sms.custom",
        "kind": "payment",
        "channel": "sms",
        "content": {"text": "Paid {{ amount | format_currency }}"},
        "variables": ["amount"],
    }
    created = await client.post(f"{API}/templates", json=body)
    assert created.status_code == 201
    template_id = created.json()["id"]

    rendered = await client.post(f"{API}/templates/render", json={"template_id": template_id, "data": {"amount": 5}})
    assert rendered.json()["content"] == {"text": "Paid $5.00"}

    missing = await client.post(f"{API}/templates/render", json={"template_id": template_id, "data": {}})
    assert missing.status_code == 422
    assert missing.json()["missing_variables"] == ["amount"]

    duplicate = await client.post(f"{API}/templates", json=body)
    assert duplicate.status_code == 409

    by_name = await client.get(f"{API}/templates/by-name/payment.sms.custom")
    assert by_name.json()["id"] == template_id


@pytest.mark.asyncio
async def test_template_with_unsupported_locale(client: AsyncClient) -> None:
    response = await client.post(
        f"{API}/templates",
        json={"name": "x", "kind": "payment", "channel": "sms", "locale": "xx_XX", "content": {"text": "x"}},
    )
    assert response.status_code == 422


# ============================================================================
# Observability
# ============================================================================


@pytest.mark.asyncio
async def test_metrics_and_liveness(client: AsyncClient) -> None:
    await client.post(f"{API}/send", json=_send_body(channels=["in_app"]))

    metrics = await client.get("/metrics")
    assert metrics.status_code == 200
    assert "notification_created_total" in metrics.text

    live = await client.get("/health/live")
    assert live.json() == {"status": "alive"}
