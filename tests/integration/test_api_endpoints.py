"""HTTP surface: status codes, error bodies and a full enrollment round trip."""

from __future__ import annotations

import uuid

from conftest import seed_plan
from treasure.db.enums import EnrollmentMode


class TestEnrollmentApi:
    async def test_enroll_and_fetch(self, client, session_maker):
        plan = await seed_plan(session_maker)
        user_id = str(uuid.uuid4())

        response = await client.post(
            "/api/v1/enrollments",
            json={
                "plan_id": str(plan["plan_id"]),
                "user_id": user_id,
                "enrollment_type": "TEAM",
                "team_name": "Foxes",
                "team_size": 4,
            },
        )
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "PENDING"
        assert body["payment_status"] == "NONE"
        assert body["mode"] == "PAY_TO_ENROLL"
        assert "X-Request-ID" in response.headers

        fetched = await client.get(f"/api/v1/enrollments/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["registration_id"] == body["registration_id"]

        listed = await client.get(f"/api/v1/users/{user_id}/enrollments")
        assert listed.json()["total"] == 1

    async def test_missing_plan_is_404(self, client):
        response = await client.post(
            "/api/v1/enrollments", json={"plan_id": str(uuid.uuid4()), "user_id": str(uuid.uuid4())}
        )
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    async def test_bad_team_is_invalid_argument(self, client, session_maker):
        plan = await seed_plan(session_maker)
        response = await client.post(
            "/api/v1/enrollments",
            json={"plan_id": str(plan["plan_id"]), "user_id": str(uuid.uuid4()), "enrollment_type": "TEAM"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_argument"

    async def test_malformed_body_is_422(self, client):
        response = await client.post("/api/v1/enrollments", json={"plan_id": "nope"})
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_argument"

    async def test_full_plan_is_409(self, client, session_maker):
        plan = await seed_plan(session_maker, max_participants=1)
        payload = {"plan_id": str(plan["plan_id"]), "user_id": str(uuid.uuid4())}
        assert (await client.post("/api/v1/enrollments", json=payload)).status_code == 201
        payload["user_id"] = str(uuid.uuid4())
        response = await client.post("/api/v1/enrollments", json=payload)
        assert response.status_code == 409
        assert response.json()["code"] == "capacity_exceeded"

    async def test_double_reject_is_invalid_state(self, client, session_maker):
        plan = await seed_plan(session_maker, mode=EnrollmentMode.APPROVAL_REQUIRED)
        created = await client.post(
            "/api/v1/enrollments", json={"plan_id": str(plan["plan_id"]), "user_id": str(uuid.uuid4())}
        )
        enrollment_id = created.json()["id"]
        assert (await client.post(f"/api/v1/enrollments/{enrollment_id}/reject")).status_code == 200
        response = await client.post(f"/api/v1/enrollments/{enrollment_id}/reject")
        assert response.status_code == 409
        assert response.json()["code"] == "invalid_state"

    async def test_registration_id_lookup(self, client):
        valid = await client.get("/api/v1/registration-ids/TH-1026-IND-550001")
        assert valid.json() == {
            "registration_id": "TH-1026-IND-550001",
            "valid": True,
            "month_year": "1026",
            "enrollment_type": "INDIVIDUAL",
            "plan_number": "55",
            "sequence": 1,
        }
        invalid = await client.get("/api/v1/registration-ids/garbage")
        assert invalid.json()["valid"] is False


class TestProgressApi:
    async def test_complete_task_and_read_levels(self, client, session_maker, publisher):
        plan = await seed_plan(session_maker, tasks=1)
        user_id = str(uuid.uuid4())
        created = await client.post("/api/v1/enrollments", json={"plan_id": str(plan["plan_id"]), "user_id": user_id})
        enrollment_id = created.json()["id"]
        task_id = plan["task_ids"][0]

        for _ in range(2):
            response = await client.post(f"/api/v1/enrollments/{enrollment_id}/tasks/{task_id}/complete")
            assert response.status_code == 200
            assert response.json()["status"] == "DONE"
        assert len(publisher.of("task.completed")) == 1

        progress = await client.get(f"/api/v1/enrollments/{enrollment_id}/progress")
        assert progress.json()["complete"] is True

        levels = await client.get(f"/api/v1/users/{user_id}/levels")
        assert levels.json()["levels"] == {"BEGINNER": 1, "INTERMEDIATE": 0, "ADVANCED": 0}

        board = await client.get("/api/v1/leaderboard/BEGINNER")
        assert board.status_code == 200
        assert board.json()["entries"][0]["user_id"] == user_id


class TestPolicyApi:
    async def test_policy_round_trip(self, client):
        user_id = str(uuid.uuid4())
        response = await client.put(
            "/api/v1/policies",
            json={"scope": "USER", "scope_ref": user_id, "policy": {"min_levels": {"ADVANCED": 2}}},
        )
        assert response.status_code == 200
        policy_id = response.json()["id"]

        effective = await client.get(f"/api/v1/users/{user_id}/policy")
        assert effective.json()["min_levels"] == {"ADVANCED": 2}

        assert (await client.post(f"/api/v1/policies/{policy_id}/deactivate")).json()["active"] is False
        effective = await client.get(f"/api/v1/users/{user_id}/policy")
        assert effective.json()["min_levels"] == {}

    async def test_global_with_ref_is_conflict(self, client):
        response = await client.put("/api/v1/policies", json={"scope": "GLOBAL", "scope_ref": "x", "policy": {}})
        assert response.status_code == 422
        assert response.json()["code"] == "policy_conflict"

    async def test_invalid_document(self, client):
        response = await client.put(
            "/api/v1/policies", json={"scope": "GLOBAL", "policy": {"tasks_per_level": {"BEGINNER": 0}}}
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_argument"


class TestSearchApi:
    async def test_search_with_filters(self, client, session_maker):
        await seed_plan(session_maker, title="Fort Secrets")
        response = await client.get("/api/v1/plans/search", params={"city": "Pune", "difficulty": "BEGINNER"})
        assert response.status_code == 200
        assert [item["title"] for item in response.json()["items"]] == ["Fort Secrets"]

    async def test_inverted_price_range_is_422(self, client):
        response = await client.get("/api/v1/plans/search", params={"price_min": 10, "price_max": 5})
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_argument"

    async def test_unknown_plan(self, client):
        response = await client.get(f"/api/v1/plans/{uuid.uuid4()}")
        assert response.status_code == 404

    async def test_leaderboard_unknown_tier(self, client):
        response = await client.get("/api/v1/leaderboard/EXPERT")
        assert response.status_code == 422
