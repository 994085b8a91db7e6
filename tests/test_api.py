"""
Tests for the HTTP surface.

These tests verify:
1. TAKES: Submission, tallies and error mapping
2. SMS WEBHOOK: Always acknowledged with empty TwiML
3. JOBS: Cron key protection and scheduler tick
4. GRADING: Admin-only grading and formula dry runs
5. LEADERBOARD: Points per participant
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select

from take_settlement.core.security import create_access_token
from take_settlement.models import (
    DropStrategy,
    GradingMode,
    Pack,
    PackStatus,
    Prop,
    PropStatus,
    SmsSession,
)

API = "/api/v1"
CRON_HEADERS = {"X-Cron-Key": "test-cron-secret"}


def bearer(role: str = "admin") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('ops@example.com', role=role)}"}


async def post_take(client, prop_id, side="A", identity="+15550000001"):
    return await client.post(
        f"{API}/takes",
        json={"propId": str(prop_id), "side": side, "identity": identity},
    )


# =============================================================================
# TEST: TAKES
# =============================================================================


class TestTakesApi:
    @pytest.mark.asyncio
    async def test_submit_take(self, client, store):
        pack = await store.pack()
        prop = await store.prop(pack)

        response = await post_take(client, prop.id)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["takeId"]
        assert (data["sideACount"], data["sideBCount"]) == (1, 0)

    @pytest.mark.asyncio
    async def test_overwrite_through_api(self, client, store):
        pack = await store.pack()
        prop = await store.prop(pack)

        await post_take(client, prop.id, "A")
        response = await post_take(client, prop.id, "b")

        data = response.json()
        assert (data["sideACount"], data["sideBCount"]) == (0, 1)

        counts = await client.get(f"{API}/props/{prop.id}/counts")
        assert counts.json() == {"sideACount": 0, "sideBCount": 1}

    @pytest.mark.asyncio
    async def test_unknown_prop(self, client):
        response = await post_take(client, uuid4())

        assert response.status_code == 404
        assert response.json()["error"] == "prop_not_found"

    @pytest.mark.asyncio
    async def test_closed_prop(self, client, store):
        pack = await store.pack()
        prop = await store.prop(pack, status=PropStatus.PUSH)

        response = await post_take(client, prop.id)

        assert response.status_code == 409
        assert response.json()["error"] == "prop_not_open"

    @pytest.mark.asyncio
    async def test_pack_closed_by_tick_rejects_takes(self, client, store):
        now = datetime.now(timezone.utc)
        pack = await store.pack(
            status=PackStatus.ACTIVE,
            open_time=now - timedelta(hours=2),
            close_time=now - timedelta(minutes=1),
        )
        prop = await store.prop(pack)

        tick = await client.post(f"{API}/jobs/pack-status", headers=CRON_HEADERS)
        assert tick.json()["liveCount"] == 1

        response = await post_take(client, prop.id)

        assert response.status_code == 409
        assert response.json()["error"] == "prop_not_open"

    @pytest.mark.asyncio
    async def test_prop_past_close_time(self, client, store):
        pack = await store.pack(status=PackStatus.ACTIVE)
        prop = await store.prop(pack, close_time=datetime.now(timezone.utc) - timedelta(minutes=1))

        response = await post_take(client, prop.id)

        assert response.status_code == 409
        assert response.json()["error"] == "prop_not_open"

    @pytest.mark.asyncio
    async def test_invalid_side(self, client, store):
        pack = await store.pack()
        prop = await store.prop(pack)

        response = await post_take(client, prop.id, side="C")

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_side"

    @pytest.mark.asyncio
    async def test_counts_for_unknown_prop(self, client):
        response = await client.get(f"{API}/props/{uuid4()}/counts")

        assert response.status_code == 404


# =============================================================================
# TEST: SMS WEBHOOK
# =============================================================================


class TestSmsWebhook:
    @pytest.mark.asyncio
    async def test_reply_advances_session(self, client, store, conversation, session_factory, transport):
        pack = await store.pack(drop_strategy=DropStrategy.SMS_CONVERSATION)
        await store.props(pack, 2)
        await conversation.seed_sessions(pack.id, ["+15550000001"])

        response = await client.post(
            f"{API}/sms/incoming",
            data={"From": "+15550000001", "To": "+15550009999", "Body": "B", "MessageSid": "SM1"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/xml")
        assert response.text == "<Response></Response>"

        async with session_factory() as db:
            sms_session = (await db.execute(select(SmsSession))).scalar_one()
        assert sms_session.current_prop_index == 1
        assert transport.bodies_for("+15550000001")[-1].startswith("2/2 ")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "form",
        [
            {"From": "+15550000001", "Body": "A", "MessageSid": "SM1"},  # no session
            {"Body": "A", "MessageSid": "SM2"},  # no sender
            {},
        ],
    )
    async def test_always_acknowledged(self, client, form):
        response = await client.post(f"{API}/sms/incoming", data=form)

        assert response.status_code == 200
        assert response.text == "<Response></Response>"


# =============================================================================
# TEST: JOB TRIGGER
# =============================================================================


class TestJobsApi:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [{}, {"X-Cron-Key": "wrong"}])
    async def test_requires_cron_key(self, client, headers):
        response = await client.post(f"{API}/jobs/pack-status", headers=headers)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_tick_opens_and_closes(self, client, store, session_factory):
        now = datetime.now(timezone.utc)
        opening = await store.pack(open_time=now - timedelta(minutes=1))
        closing = await store.pack(
            status=PackStatus.ACTIVE,
            open_time=now - timedelta(hours=2),
            close_time=now - timedelta(minutes=1),
        )

        response = await client.post(f"{API}/jobs/pack-status", headers=CRON_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert (data["openedCount"], data["liveCount"]) == (1, 1)

        async with session_factory() as db:
            assert (await db.get(Pack, opening.id)).status == PackStatus.ACTIVE
            assert (await db.get(Pack, closing.id)).status == PackStatus.LIVE

        again = await client.post(f"{API}/jobs/pack-status", headers=CRON_HEADERS)
        assert (again.json()["openedCount"], again.json()["liveCount"]) == (0, 0)


# =============================================================================
# TEST: GRADING
# =============================================================================


class TestGradingApi:
    @pytest.mark.asyncio
    async def test_requires_token(self, client):
        response = await client.post(
            f"{API}/admin/grading/props",
            json={"updates": [{"id": str(uuid4()), "status": "gradedA"}]},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_requires_admin_role(self, client):
        response = await client.post(
            f"{API}/admin/grading/props",
            json={"updates": [{"id": str(uuid4()), "status": "gradedA"}]},
            headers=bearer("viewer"),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_rejects_invalid_token(self, client):
        response = await client.post(
            f"{API}/admin/grading/props",
            json={"updates": [{"id": str(uuid4()), "status": "gradedA"}]},
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_grade_props(self, client, store, session_factory, transport):
        pack = await store.pack(status=PackStatus.ACTIVE)
        prop = await store.prop(pack, side_a_value=200)
        await post_take(client, prop.id, "A", "+15550000001")
        await store.set_pack_status(pack, PackStatus.LIVE)
        missing = uuid4()

        response = await client.post(
            f"{API}/admin/grading/props",
            json={
                "updates": [
                    {"id": str(prop.id), "status": "gradedA", "result": "It happened"},
                    {"id": str(missing), "status": "push"},
                ]
            },
            headers=bearer(),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["notifiedCount"] == 1
        results = {r["propId"]: r for r in data["perPropResults"]}
        assert results[str(prop.id)]["success"] is True
        assert results[str(prop.id)]["takesUpdated"] == 1
        assert results[str(missing)]["success"] is False
        assert data["perPackSummary"][0]["transitioned"] is True

        async with session_factory() as db:
            assert (await db.get(Pack, pack.id)).status == PackStatus.GRADED
            assert (await db.get(Prop, prop.id)).result == "It happened"

    @pytest.mark.asyncio
    async def test_grade_rejects_open_status(self, client):
        response = await client.post(
            f"{API}/admin/grading/props",
            json={"updates": [{"id": str(uuid4()), "status": "open"}]},
            headers=bearer(),
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_formula_dry_run(self, client, store, session_factory):
        pack = await store.pack()
        prop = await store.prop(
            pack,
            grading_mode=GradingMode.AUTO,
            formula_key="who_wins",
            formula_params={"whoWins": {"sideAMap": "away", "sideBMap": "home"}},
        )

        response = await client.post(
            f"{API}/admin/grading/props/{prop.id}/formula",
            json={
                "snapshot": {
                    "home": "LAD",
                    "away": "SF",
                    "lineScore": {"home": {"R": 2}, "away": {"R": 7}},
                },
                "dryRun": True,
            },
            headers=bearer(),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["propStatus"] == "gradedA"
        assert data["propResult"] == "LAD 2 - 7 SF"
        assert data["dryRun"] is True
        assert data["grading"] is None

        async with session_factory() as db:
            assert (await db.get(Prop, prop.id)).status == PropStatus.OPEN

    @pytest.mark.asyncio
    async def test_formula_not_configured(self, client, store):
        pack = await store.pack()
        prop = await store.prop(pack)

        response = await client.post(
            f"{API}/admin/grading/props/{prop.id}/formula",
            json={"snapshot": {"home": "LAD", "away": "SF"}, "dryRun": True},
            headers=bearer(),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "formula_not_configured"

    @pytest.mark.asyncio
    async def test_formula_missing_game_data(self, client, store):
        pack = await store.pack()
        prop = await store.prop(
            pack,
            grading_mode=GradingMode.AUTO,
            formula_key="who_wins",
            formula_params={"whoWins": {"sideAMap": "home", "sideBMap": "away"}},
        )

        response = await client.post(
            f"{API}/admin/grading/props/{prop.id}/formula",
            json={"snapshot": {"home": "LAD", "away": "SF"}, "dryRun": True},
            headers=bearer(),
        )

        assert response.status_code == 422
        assert response.json()["error"] == "formula_input_error"


# =============================================================================
# TEST: LEADERBOARD & HEALTH
# =============================================================================


class TestPackViews:
    @pytest.mark.asyncio
    async def test_leaderboard(self, client, store, grading_engine):
        from take_settlement.services.grading_engine import PropGradeUpdate

        pack = await store.pack(url="friday-slate")
        prop_1 = await store.prop(pack, side_a_value=200, side_b_value=300)
        prop_2 = await store.prop(pack, side_a_value=50, side_b_value=50)
        await post_take(client, prop_1.id, "B", "+15550000001")
        await post_take(client, prop_2.id, "A", "+15550000001")
        await post_take(client, prop_1.id, "A", "+15550000002")
        await grading_engine.grade_props(
            [
                PropGradeUpdate(prop_1.id, PropStatus.GRADED_B),
                PropGradeUpdate(prop_2.id, PropStatus.PUSH),
            ]
        )

        response = await client.get(f"{API}/packs/friday-slate/leaderboard")

        assert response.status_code == 200
        data = response.json()
        assert data["packUrl"] == "friday-slate"
        assert [(e["identity"], e["points"], e["won"], e["pushed"]) for e in data["entries"]] == [
            ("+15550000001", 400, 1, 1),
            ("+15550000002", 0, 0, 0),
        ]

    @pytest.mark.asyncio
    async def test_unknown_pack_leaderboard(self, client):
        response = await client.get(f"{API}/packs/nope/leaderboard")

        assert response.status_code == 404
        assert response.json()["error"] == "pack_not_found"

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
