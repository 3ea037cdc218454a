"""Tests for appointment endpoints."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from httpx import AsyncClient

from app.core.security import create_access_token
from app.schemas.appointments import AppointmentStatus

ANCHOR = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
def appointment_data(patient_id) -> dict:
    """Single 30 minute appointment on Monday 2024-01-01 09:00 UTC."""
    return {
        "patient_id": str(patient_id),
        "title": "Consultation",
        "description": "Follow-up visit",
        "start_time": "2024-01-01T09:00:00Z",
        "end_time": "2024-01-01T09:30:00Z",
    }


@pytest.fixture
def recurring_data(appointment_data: dict) -> dict:
    """Monday/Wednesday series of five occurrences."""
    return {
        **appointment_data,
        "title": "Physiotherapy",
        "recurrence": {
            "frequency": "weekly",
            "interval": 1,
            "weekdays": [1, 3],
            "end_type": "count",
            "count": 5,
        },
    }


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


@pytest.mark.asyncio
async def test_create_appointment(
    client: AsyncClient,
    auth_headers: dict,
    appointment_data: dict,
) -> None:
    """Test creating an appointment in a free slot."""
    response = await client.post(
        "/api/v1/appointments/",
        json=appointment_data,
        headers=auth_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["state"] == "done"
    assert data["warning"] is None
    assert len(data["appointments"]) == 1
    appointment = data["appointments"][0]
    assert appointment["title"] == "Consultation"
    assert appointment["status"] == "scheduled"
    assert appointment["is_recurring"] is False
    assert appointment["recurrence_parent_id"] is None


@pytest.mark.asyncio
async def test_create_appointment_requires_authentication(
    client: AsyncClient,
    store,
    appointment_data: dict,
) -> None:
    """Test that scheduling without a clinic token is refused."""
    response = await client.post("/api/v1/appointments/", json=appointment_data)
    assert response.status_code == 401
    assert response.json()["error"] == "UnauthorizedException"
    assert store.records == {}


@pytest.mark.asyncio
async def test_create_appointment_rejects_invalid_token(
    client: AsyncClient,
    appointment_data: dict,
) -> None:
    """Test that a garbage bearer token is treated as unauthenticated."""
    response = await client.post(
        "/api/v1/appointments/",
        json=appointment_data,
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_token_without_clinic_claim(
    client: AsyncClient,
    appointment_data: dict,
) -> None:
    """Test that an access token without a clinic subject is refused."""
    token = create_access_token({"role": "clinic"})
    response = await client.post(
        "/api/v1/appointments/",
        json=appointment_data,
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_conflicting_appointment_needs_confirmation(
    client: AsyncClient,
    auth_headers: dict,
    store,
    make_appointment,
    appointment_data: dict,
) -> None:
    """Test the warn-then-confirm flow for an overlapping booking."""
    existing = make_appointment(ANCHOR + timedelta(minutes=15), minutes=30)
    store.seed(existing)

    response = await client.post(
        "/api/v1/appointments/",
        json=appointment_data,
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "awaiting_confirmation"
    assert data["appointments"] == []
    assert data["warning"]["total_conflicts"] == 1
    conflict = data["warning"]["occurrences"][0]["conflicts"][0]
    assert conflict["id"] == str(existing.id)
    assert conflict["patient_name"] == "Jane Roe"
    assert len(store.records) == 1

    response = await client.post(
        "/api/v1/appointments/",
        json={**appointment_data, "confirm_conflicts": True},
        headers=auth_headers,
    )
    assert response.status_code == 201
    assert response.json()["state"] == "done"
    assert len(store.records) == 2


@pytest.mark.asyncio
async def test_create_appointment_inverted_interval(
    client: AsyncClient,
    auth_headers: dict,
    appointment_data: dict,
) -> None:
    """Test that an end time before the start time is rejected."""
    response = await client.post(
        "/api/v1/appointments/",
        json={**appointment_data, "end_time": "2024-01-01T08:00:00Z"},
        headers=auth_headers,
    )
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationException"


@pytest.mark.asyncio
async def test_create_appointment_unknown_patient(
    client: AsyncClient,
    auth_headers: dict,
    appointment_data: dict,
) -> None:
    """Test booking for a patient outside the clinic."""
    response = await client.post(
        "/api/v1/appointments/",
        json={**appointment_data, "patient_id": str(uuid4())},
        headers=auth_headers,
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_appointment_missing_fields(
    client: AsyncClient,
    auth_headers: dict,
) -> None:
    """Test request validation errors."""
    response = await client.post(
        "/api/v1/appointments/",
        json={"title": "Consultation"},
        headers=auth_headers,
    )
    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "ValidationError"
    assert data["details"]


@pytest.mark.asyncio
async def test_create_appointment_storage_failure(
    client: AsyncClient,
    auth_headers: dict,
    store,
    appointment_data: dict,
) -> None:
    """Test that a failed write surfaces as a persistence error."""
    store.failing.add("insert_appointment")
    response = await client.post(
        "/api/v1/appointments/",
        json=appointment_data,
        headers=auth_headers,
    )
    assert response.status_code == 503
    assert response.json()["error"] == "PersistenceException"
    assert store.records == {}


@pytest.mark.asyncio
async def test_create_recurring_appointment(
    client: AsyncClient,
    auth_headers: dict,
    recurring_data: dict,
) -> None:
    """Test booking a recurrence series."""
    response = await client.post(
        "/api/v1/appointments/recurring",
        json=recurring_data,
        headers=auth_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["state"] == "done"
    parent, *children = data["appointments"]
    assert parent["is_recurring"] is True
    assert parent["recurrence_rule"] == "RRULE:FREQ=WEEKLY;INTERVAL=1;BYDAY=MO,WE;COUNT=5"
    assert len(children) == 4
    assert all(child["recurrence_parent_id"] == parent["id"] for child in children)
    assert all(child["is_recurring"] is False for child in children)


@pytest.mark.asyncio
async def test_recurring_conflict_then_confirm(
    client: AsyncClient,
    auth_headers: dict,
    store,
    make_appointment,
    recurring_data: dict,
) -> None:
    """Test that a single flagged occurrence holds the whole series."""
    # Overlaps the Monday 2024-01-08 occurrence only
    store.seed(make_appointment(ANCHOR + timedelta(days=7), minutes=60))

    response = await client.post(
        "/api/v1/appointments/recurring",
        json=recurring_data,
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "awaiting_confirmation"
    assert [occ["occurrence_index"] for occ in data["warning"]["occurrences"]] == [2]
    assert data["warning"]["message"] == "1 occurrence overlaps existing appointments"
    assert len(store.records) == 1

    response = await client.post(
        "/api/v1/appointments/recurring",
        json={**recurring_data, "confirm_conflicts": True},
        headers=auth_headers,
    )
    assert response.status_code == 201
    assert len(response.json()["appointments"]) == 5
    assert len(store.records) == 6


@pytest.mark.asyncio
async def test_recurring_storage_failure_persists_nothing(
    client: AsyncClient,
    auth_headers: dict,
    store,
    recurring_data: dict,
) -> None:
    """Test that a failed batch leaves no partial series."""
    store.failing.add("insert_many")
    response = await client.post(
        "/api/v1/appointments/recurring",
        json=recurring_data,
        headers=auth_headers,
    )
    assert response.status_code == 503
    assert store.records == {}


@pytest.mark.asyncio
async def test_recurring_zero_interval(
    client: AsyncClient,
    auth_headers: dict,
    recurring_data: dict,
) -> None:
    """Test that a non-positive recurrence interval is rejected."""
    recurring_data["recurrence"]["interval"] = 0
    response = await client.post(
        "/api/v1/appointments/recurring",
        json=recurring_data,
        headers=auth_headers,
    )
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationException"


@pytest.mark.asyncio
async def test_recurring_count_above_limit(
    client: AsyncClient,
    auth_headers: dict,
    store,
    recurring_data: dict,
) -> None:
    """Test that an oversized series is refused before anything is written."""
    recurring_data["recurrence"]["count"] = 300_000
    response = await client.post(
        "/api/v1/appointments/recurring",
        json=recurring_data,
        headers=auth_headers,
    )
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationException"
    assert store.records == {}


@pytest.mark.asyncio
async def test_recurring_invalid_weekday(
    client: AsyncClient,
    auth_headers: dict,
    recurring_data: dict,
) -> None:
    """Test that weekday indices outside 0-6 are rejected."""
    recurring_data["recurrence"]["weekdays"] = [1, 9]
    response = await client.post(
        "/api/v1/appointments/recurring",
        json=recurring_data,
        headers=auth_headers,
    )
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_list_appointments(
    client: AsyncClient,
    auth_headers: dict,
    store,
    make_appointment,
) -> None:
    """Test listing appointments with a date window."""
    inside = make_appointment(ANCHOR)
    store.seed(inside, make_appointment(ANCHOR + timedelta(days=10)))

    response = await client.get(
        "/api/v1/appointments/",
        params={"from_date": "2024-01-01T00:00:00Z", "to_date": "2024-01-02T00:00:00Z"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["id"] == str(inside.id)


@pytest.mark.asyncio
async def test_list_appointments_by_status(
    client: AsyncClient,
    auth_headers: dict,
    store,
    make_appointment,
) -> None:
    """Test filtering appointments by status."""
    cancelled = make_appointment(ANCHOR, status=AppointmentStatus.CANCELLED)
    store.seed(cancelled, make_appointment(ANCHOR + timedelta(hours=1)))

    response = await client.get(
        "/api/v1/appointments/",
        params={"status": "cancelled"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert [item["id"] for item in response.json()["items"]] == [str(cancelled.id)]


@pytest.mark.asyncio
async def test_list_appointments_inverted_window(
    client: AsyncClient,
    auth_headers: dict,
) -> None:
    """Test that to_date must follow from_date."""
    response = await client.get(
        "/api/v1/appointments/",
        params={"from_date": "2024-01-02T00:00:00Z", "to_date": "2024-01-01T00:00:00Z"},
        headers=auth_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_appointments_naive_and_aware_bounds(
    client: AsyncClient,
    auth_headers: dict,
    store,
    make_appointment,
) -> None:
    """Test that a naive bound is read as UTC next to an aware one."""
    inside = make_appointment(ANCHOR)
    store.seed(inside, make_appointment(ANCHOR + timedelta(days=10)))

    response = await client.get(
        "/api/v1/appointments/",
        params={"from_date": "2024-01-01T00:00:00", "to_date": "2024-01-02T00:00:00Z"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert [item["id"] for item in response.json()["items"]] == [str(inside.id)]


@pytest.mark.asyncio
async def test_get_appointment(
    client: AsyncClient,
    auth_headers: dict,
    store,
    make_appointment,
) -> None:
    """Test getting a specific appointment."""
    appointment = make_appointment(ANCHOR)
    store.seed(appointment)

    response = await client.get(
        f"/api/v1/appointments/{appointment.id}",
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["id"] == str(appointment.id)


@pytest.mark.asyncio
async def test_get_appointment_not_found(
    client: AsyncClient,
    auth_headers: dict,
) -> None:
    """Test getting an unknown appointment."""
    response = await client.get(
        f"/api/v1/appointments/{uuid4()}",
        headers=auth_headers,
    )
    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundException"


@pytest.mark.asyncio
async def test_reschedule_appointment(
    client: AsyncClient,
    auth_headers: dict,
    store,
    make_appointment,
) -> None:
    """Test moving an appointment to a free slot."""
    appointment = make_appointment(ANCHOR)
    store.seed(appointment)

    response = await client.patch(
        f"/api/v1/appointments/{appointment.id}/time",
        json={"start_time": "2024-01-02T14:00:00Z", "end_time": "2024-01-02T14:30:00Z"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["state"] == "done"
    assert store.records[appointment.id].start_time == datetime(2024, 1, 2, 14, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_reschedule_into_conflict(
    client: AsyncClient,
    auth_headers: dict,
    store,
    make_appointment,
) -> None:
    """Test that moving onto another booking waits for confirmation."""
    moving = make_appointment(ANCHOR)
    store.seed(moving, make_appointment(ANCHOR + timedelta(hours=3)))

    response = await client.patch(
        f"/api/v1/appointments/{moving.id}/time",
        json={"start_time": "2024-01-01T12:00:00Z", "end_time": "2024-01-01T12:30:00Z"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["state"] == "awaiting_confirmation"
    assert store.records[moving.id].start_time == ANCHOR


@pytest.mark.asyncio
async def test_update_appointment_status(
    client: AsyncClient,
    auth_headers: dict,
    store,
    make_appointment,
) -> None:
    """Test updating appointment status."""
    appointment = make_appointment(ANCHOR)
    store.seed(appointment)

    response = await client.patch(
        f"/api/v1/appointments/{appointment.id}/status",
        json={"status": "no_show"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "no_show"
    assert store.records[appointment.id].status == AppointmentStatus.NO_SHOW


@pytest.mark.asyncio
async def test_check_conflicts(
    client: AsyncClient,
    auth_headers: dict,
    store,
    make_appointment,
) -> None:
    """Test the read-only conflict check."""
    existing = make_appointment(ANCHOR, minutes=60)
    cancelled = make_appointment(ANCHOR, minutes=60, status=AppointmentStatus.CANCELLED)
    store.seed(existing, cancelled)

    response = await client.post(
        "/api/v1/appointments/conflicts/check",
        json={"start_time": "2024-01-01T09:30:00Z", "end_time": "2024-01-01T10:30:00Z"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["has_conflicts"] is True
    assert [c["id"] for c in data["conflicts"]] == [str(existing.id)]

    response = await client.post(
        "/api/v1/appointments/conflicts/check",
        json={"start_time": "2024-01-01T10:00:00Z", "end_time": "2024-01-01T11:00:00Z"},
        headers=auth_headers,
    )
    assert response.json() == {"has_conflicts": False, "conflicts": []}
