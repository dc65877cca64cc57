"""HTTP API tests for the progression endpoints."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient

from streetxp.db.models import VenueLead


def _mission_body(**overrides) -> dict:
    now = datetime.now(timezone.utc)
    body = {
        "title": "Two leads today",
        "trigger_type": "lead_added",
        "xp_reward": 120,
        "required_count": 2,
        "valid_from": (now - timedelta(hours=1)).isoformat(),
        "valid_to": (now + timedelta(days=1)).isoformat(),
    }
    body.update(overrides)
    return body


class TestRanksAndProgression:

    @pytest.mark.asyncio
    async def test_list_ranks(self, client: AsyncClient):
        response = await client.get("/api/v1/ranks")
        assert response.status_code == 200
        ranks = response.json()["ranks"]
        assert [r["name"] for r in ranks] == ["Bronze", "Silver", "Gold", "Platinum", "Diamond", "Black Key"]
        assert Decimal(ranks[2]["commission_rate"]) == Decimal("0.20")

    @pytest.mark.asyncio
    async def test_progression_unknown_user(self, client: AsyncClient):
        response = await client.get("/api/v1/users/999/progression")
        assert response.status_code == 404
        assert response.json() == {"detail": "User not found"}

    @pytest.mark.asyncio
    async def test_manual_bonus_and_progression(self, client: AsyncClient, make_user):
        user = await make_user()

        response = await client.post(f"/api/v1/users/{user.id}/xp", json={"amount": 1100})
        assert response.status_code == 200
        data = response.json()
        assert data["new_total_xp"] == 1100
        assert data["rank_up"] is True
        assert data["new_rank"] == "Silver"

        progression = (await client.get(f"/api/v1/users/{user.id}/progression")).json()
        assert progression["total_xp"] == 1100
        assert progression["next_rank"] == "Gold"
        assert progression["xp_remaining"] == 1400

    @pytest.mark.asyncio
    async def test_negative_amount_is_validation_error(self, client: AsyncClient, make_user):
        user = await make_user()
        response = await client.post(f"/api/v1/users/{user.id}/xp", json={"amount": -5})
        assert response.status_code == 422
        assert response.json()["detail"] == "Validation error"

    @pytest.mark.asyncio
    async def test_award_to_unknown_user(self, client: AsyncClient):
        response = await client.post("/api/v1/users/999/xp", json={"amount": 5})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_xp_history(self, client: AsyncClient, make_user):
        user = await make_user()
        for amount in (5, 10, 15):
            await client.post(f"/api/v1/users/{user.id}/xp", json={"amount": amount})

        response = await client.get(f"/api/v1/users/{user.id}/xp/history", params={"per_page": 2})

        data = response.json()
        assert data["total"] == 3
        assert [e["xp_amount"] for e in data["entries"]] == [15, 10]
        assert data["entries"][0]["source"] == "manual_bonus"


class TestMissionEndpoints:

    @pytest.mark.asyncio
    async def test_create_mission(self, client: AsyncClient):
        response = await client.post("/api/v1/missions", json=_mission_body())
        assert response.status_code == 201
        assert response.json()["trigger_type"] == "lead_added"

    @pytest.mark.asyncio
    async def test_create_city_mission_without_city(self, client: AsyncClient):
        response = await client.post("/api/v1/missions", json=_mission_body(scope="city"))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_create_mission_unknown_trigger(self, client: AsyncClient):
        response = await client.post("/api/v1/missions", json=_mission_body(trigger_type="lead"))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_mission_lifecycle(self, client: AsyncClient, make_user, fake_redis):
        user = await make_user()
        mission_id = (await client.post("/api/v1/missions", json=_mission_body())).json()["mission_id"]

        early = await client.post(f"/api/v1/users/{user.id}/missions/{mission_id}/claim")
        assert early.status_code == 404

        first = await client.post(f"/api/v1/users/{user.id}/actions/lead-added", json={"lead_id": 1})
        assert first.status_code == 200
        assert first.json()["mission_updates"] == [{"mission_id": mission_id, "new_count": 1, "completed": False}]

        not_done = await client.post(f"/api/v1/users/{user.id}/missions/{mission_id}/claim")
        assert not_done.status_code == 409
        assert not_done.json()["detail"] == "Mission not completed yet"

        await client.post(f"/api/v1/users/{user.id}/actions/lead-added", json={"lead_id": 2})
        missions = (await client.get(f"/api/v1/users/{user.id}/missions")).json()["missions"]
        assert missions[0]["is_completed"] is True

        claim = await client.post(f"/api/v1/users/{user.id}/missions/{mission_id}/claim")
        assert claim.status_code == 200
        assert claim.json() == {"success": True, "xp_awarded": 120}

        again = await client.post(f"/api/v1/users/{user.id}/missions/{mission_id}/claim")
        assert again.status_code == 409
        assert again.json()["detail"] == "Reward already claimed"

        progression = (await client.get(f"/api/v1/users/{user.id}/progression")).json()
        assert progression["total_xp"] == 2 * 25 + 120

    @pytest.mark.asyncio
    async def test_missions_unknown_user(self, client: AsyncClient):
        response = await client.get("/api/v1/users/999/missions")
        assert response.status_code == 404


class TestActionEndpoints:

    @pytest.mark.asyncio
    async def test_run_completed(self, client: AsyncClient, make_user):
        user = await make_user()
        response = await client.post(
            f"/api/v1/users/{user.id}/actions/run-completed",
            json={"run_id": 3, "venue_count": 2, "duration_seconds": 1800},
        )
        assert response.status_code == 200
        assert response.json()["award"]["new_total_xp"] == 70

    @pytest.mark.asyncio
    async def test_lead_status_without_reward(self, client: AsyncClient, make_user):
        user = await make_user()
        response = await client.post(
            f"/api/v1/users/{user.id}/actions/lead-status",
            json={"lead_id": 3, "old_status": "contacted", "new_status": "contacted"},
        )
        assert response.status_code == 200
        assert response.json() == {"award": None, "mission_updates": []}

    @pytest.mark.asyncio
    async def test_action_for_unknown_user(self, client: AsyncClient):
        response = await client.post("/api/v1/users/999/actions/lead-added", json={})
        assert response.status_code == 404


class TestStreakEarningsCelebrations:

    @pytest.mark.asyncio
    async def test_streak_after_activity(self, client: AsyncClient, make_user):
        user = await make_user()
        await client.post(f"/api/v1/users/{user.id}/xp", json={"amount": 5})

        data = (await client.get(f"/api/v1/users/{user.id}/streak")).json()

        assert data["current_streak"] == 1
        assert data["is_active_today"] is True

    @pytest.mark.asyncio
    async def test_streak_unknown_user(self, client: AsyncClient):
        assert (await client.get("/api/v1/users/999/streak")).status_code == 404

    @pytest.mark.asyncio
    async def test_earnings(self, client: AsyncClient, db_session, make_user):
        user = await make_user(current_rank="Gold")
        for n in range(4):
            db_session.add(VenueLead(created_by_user_id=user.id, venue_name=f"Venue {n}", status="live"))
        await db_session.commit()

        data = (await client.get(f"/api/v1/users/{user.id}/earnings")).json()

        assert data["live_venues"] == 4
        assert Decimal(data["estimated_monthly"]) == Decimal("120")
        assert Decimal(data["estimated_annual"]) == Decimal("1440")

    @pytest.mark.asyncio
    async def test_rank_celebration_ack(self, client: AsyncClient, make_user):
        user = await make_user()
        await client.post(f"/api/v1/users/{user.id}/xp", json={"amount": 1000})

        celebrations = (await client.get(f"/api/v1/users/{user.id}/rank-celebrations")).json()["celebrations"]
        assert [c["new_rank"] for c in celebrations] == ["Silver"]

        cid = celebrations[0]["celebration_id"]
        ack = await client.post(f"/api/v1/users/{user.id}/rank-celebrations/{cid}/ack")
        assert ack.status_code == 200
        again = await client.post(f"/api/v1/users/{user.id}/rank-celebrations/{cid}/ack")
        assert again.status_code == 404
