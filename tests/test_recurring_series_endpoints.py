import datetime as dt

import pytest
from httpx import ASGITransport, AsyncClient

from aesthetech_api.models.appointment import Appointment

UTC = dt.timezone.utc


def _next_monday() -> dt.date:
    today = dt.datetime.now(UTC).date()
    return today + dt.timedelta(days=7 + (-today.weekday()) % 7)


def _series_payload(salon, start: dt.date, **extra) -> dict:
    payload = {
        "clientId": str(salon.client_id),
        "staffId": str(salon.staff_id),
        "serviceId": str(salon.service_id),
        "recurrence": {
            "pattern": "WEEKLY",
            "startDate": start.isoformat(),
            "timeOfDay": "10:00",
            "dayOfWeek": 1,
            "endType": "AFTER_COUNT",
            "endAfterCount": 3,
        },
    }
    payload.update(extra)
    return payload


@pytest.mark.asyncio
async def test_preview_then_create_with_alternative(app_with_db, salon) -> None:
    app, session_factory = app_with_db
    start = _next_monday()
    busy_day = start + dt.timedelta(weeks=1)
    async with session_factory() as session:
        session.add(
            Appointment(
                client_id=salon.other_client_id,
                staff_id=salon.staff_id,
                service_id=salon.service_id,
                start_time=dt.datetime.combine(busy_day, dt.time(10), tzinfo=UTC),
                end_time=dt.datetime.combine(busy_day, dt.time(11), tzinfo=UTC),
            )
        )
        await session.commit()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        preview = await client.post("/api/v1/recurring-series/preview", json=_series_payload(salon, start))
        assert preview.status_code == 200
        body = preview.json()
        assert body["summary"] == "Weekly at 10:00 AM on Mondays, 3 occurrences"
        assert body["durationMinutes"] == 60
        assert len(body["occurrences"]) == 3
        assert len(body["nextDates"]) == 3
        assert len(body["available"]) == 2
        (conflict,) = body["conflicts"]
        assert conflict["date"] == busy_day.isoformat()
        alternative = conflict["alternatives"][0]
        assert alternative["staffName"] == "Sam Stylist"

        unresolved = await client.post("/api/v1/recurring-series", json=_series_payload(salon, start))
        assert unresolved.status_code == 422
        assert unresolved.json()["detail"]["details"]["unresolved_dates"] == [busy_day.isoformat()]

        created = await client.post(
            "/api/v1/recurring-series",
            json=_series_payload(
                salon,
                start,
                resolutions=[{"date": busy_day.isoformat(), "action": "ACCEPT_ALTERNATIVE", "alternative": alternative}],
                performedBy="reception",
            ),
        )

    assert created.status_code == 201
    result = created.json()
    assert result["appointmentsCreated"] == 3
    assert result["alternativesUsed"] == 1
    assert result["series"]["occurrencesCreated"] == 3
    assert result["series"]["isActive"] is True


@pytest.mark.asyncio
async def test_series_lifecycle_endpoints(app_with_db, salon) -> None:
    app, _ = app_with_db
    start = _next_monday()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        created = await client.post("/api/v1/recurring-series", json=_series_payload(salon, start))
        assert created.status_code == 201
        series_id = created.json()["series"]["id"]
        appointment_ids = created.json()["appointmentIds"]

        paused = await client.post(f"/api/v1/recurring-series/{series_id}/pause", json={"reason": "Holiday"})
        assert paused.json()["isPaused"] is True
        assert paused.json()["pauseReason"] == "Holiday"
        blocked = await client.post(f"/api/v1/recurring-series/{series_id}/extend", json={"additionalMonths": 1})
        assert blocked.status_code == 422
        resumed = await client.post(f"/api/v1/recurring-series/{series_id}/resume")
        assert resumed.json()["isPaused"] is False

        out_of_range = await client.post(
            f"/api/v1/recurring-series/{series_id}/extend",
            json={"additionalMonths": 25},
        )
        assert out_of_range.status_code == 422

        exception = await client.post(
            f"/api/v1/recurring-series/{series_id}/exceptions",
            json={"date": (start + dt.timedelta(weeks=1)).isoformat(), "reason": "Training day"},
        )
        assert exception.status_code == 201
        removed = await client.delete(f"/api/v1/recurring-series/exceptions/{exception.json()['id']}")
        assert removed.status_code == 200
        missing = await client.delete(f"/api/v1/recurring-series/exceptions/{exception.json()['id']}")
        assert missing.status_code == 404

        detached = await client.post(f"/api/v1/appointments/{appointment_ids[-1]}/detach")
        assert detached.status_code == 200
        assert detached.json()["isDetachedFromSeries"] is True

        cancelled_from = await client.post(
            f"/api/v1/recurring-series/{series_id}/cancel-from",
            json={"fromDate": (start + dt.timedelta(weeks=2)).isoformat()},
        )
        assert cancelled_from.json()["cancelledCount"] == 0

        cancelled = await client.post(f"/api/v1/recurring-series/{series_id}/cancel", json={"performedBy": "owner"})
        assert cancelled.status_code == 200
        assert cancelled.json()["cancelledCount"] == 1
        assert cancelled.json()["series"]["isActive"] is False

        again = await client.post(f"/api/v1/recurring-series/{series_id}/cancel")
        assert again.status_code == 422


@pytest.mark.asyncio
async def test_series_read_update_and_clone_endpoints(app_with_db, salon) -> None:
    app, _ = app_with_db
    start = _next_monday()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        created = await client.post("/api/v1/recurring-series", json=_series_payload(salon, start))
        series_id = created.json()["series"]["id"]

        listed = await client.get("/api/v1/recurring-series", params={"clientId": str(salon.client_id)})
        assert listed.status_code == 200
        assert [item["id"] for item in listed.json()] == [series_id]

        exception = await client.post(
            f"/api/v1/recurring-series/{series_id}/exceptions",
            json={"date": (start + dt.timedelta(weeks=1)).isoformat(), "reason": "Training day"},
        )
        assert exception.status_code == 201
        exceptions = await client.get(f"/api/v1/recurring-series/{series_id}/exceptions")
        assert [item["reason"] for item in exceptions.json()] == ["Training day"]

        detail = await client.get(f"/api/v1/recurring-series/{series_id}")
        assert detail.status_code == 200
        body = detail.json()
        assert body["summary"] == "Weekly at 10:00 AM on Mondays, 3 occurrences"
        assert [item["status"] for item in body["appointments"]] == ["SCHEDULED", "CANCELLED", "SCHEDULED"]
        assert len(body["exceptions"]) == 1

        updated = await client.patch(
            f"/api/v1/recurring-series/{series_id}",
            json={"timeOfDay": "16:00", "notes": "Toner refresh", "performedBy": "owner"},
        )
        assert updated.status_code == 200
        assert updated.json()["updatedCount"] == 2
        assert updated.json()["skippedDueToConflict"] == []
        assert updated.json()["series"]["timeOfDay"] == "16:00"
        assert updated.json()["series"]["notes"] == "Toner refresh"
        moved = await client.get(f"/api/v1/recurring-series/{series_id}")
        assert moved.json()["appointments"][0]["start"].startswith(f"{start.isoformat()}T16:00")

        bad_time = await client.patch(f"/api/v1/recurring-series/{series_id}", json={"timeOfDay": "4pm"})
        assert bad_time.status_code == 422

        clone = await client.post(
            f"/api/v1/recurring-series/{series_id}/clone",
            json={"clientId": str(salon.other_client_id), "timeOfDay": "12:00"},
        )
        assert clone.status_code == 201
        assert clone.json()["appointmentsCreated"] == 3
        assert clone.json()["series"]["clientId"] == str(salon.other_client_id)
        assert clone.json()["series"]["notes"] == "Toner refresh"

        missing = await client.get(f"/api/v1/recurring-series/{salon.client_id}")
        assert missing.status_code == 404
        missing_clone = await client.post(f"/api/v1/recurring-series/{salon.client_id}/clone")
        assert missing_clone.status_code == 404
