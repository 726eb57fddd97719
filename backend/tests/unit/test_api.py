"""
API endpoint tests using httpx against the FastAPI app
"""
import pytest
from httpx import ASGITransport, AsyncClient

from outreach.core.config import Settings
from outreach.main import create_app

API = "/api/v1"

UTC_LIMITS = {"timezone": "UTC", "min_delay_seconds": 0, "max_delay_seconds": 0}

CONNECT_THEN_MESSAGE = [
    {"position": 0, "name": "Connect", "action_type": "connection_request"},
    {"position": 1, "name": "Intro", "action_type": "message", "requires_approval": False},
]


@pytest.fixture
def app(engine):
    app = create_app(Settings(_env_file=None))
    app.state.engine = engine
    return app


def client_for(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def active_campaign(client: AsyncClient, stages=None, **fields) -> str:
    body = {"id": "camp-1", "title": "VP Sales search", "rate_limits": UTC_LIMITS, **fields}
    response = await client.post(f"{API}/campaigns/", json=body)
    assert response.status_code == 201
    response = await client.put(f"{API}/campaigns/camp-1/pipeline/", json={"stages": stages or CONNECT_THEN_MESSAGE})
    assert response.status_code == 201
    response = await client.post(f"{API}/campaigns/camp-1/activate")
    assert response.status_code == 200
    return "camp-1"


async def enroll(client: AsyncClient, candidate_id: str = "cand-1", **fields):
    body = {"id": candidate_id, "name": "Jordan Lee", **fields}
    return await client.post(f"{API}/campaigns/camp-1/candidates/", json=body)


class TestHealthEndpoints:
    """Tests for health and root endpoints"""

    @pytest.mark.asyncio
    async def test_root(self, app):
        """Root endpoint reports the service as running"""
        async with client_for(app) as client:
            response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    @pytest.mark.asyncio
    async def test_health(self, app):
        """Health reports backends once the engine is wired"""
        async with client_for(app) as client:
            response = await client.get(f"{API}/health")
        data = response.json()
        assert data["status"] == "healthy"
        assert data["storage_backend"] == "memory"
        assert data["executor"] == "scripted"
        assert data["inflight_dispatches"] == 0

    @pytest.mark.asyncio
    async def test_engine_not_ready(self):
        """Endpoints needing the engine return 503 before startup"""
        app = create_app(Settings(_env_file=None))
        async with client_for(app) as client:
            assert (await client.get(f"{API}/health")).json()["status"] == "starting"
            assert (await client.get(f"{API}/campaigns/")).status_code == 503


class TestCampaignEndpoints:
    """Tests for campaign and pipeline endpoints"""

    @pytest.mark.asyncio
    async def test_create_uses_config_defaults(self, app):
        """Unset policy fields come from the YAML config"""
        async with client_for(app) as client:
            response = await client.post(f"{API}/campaigns/", json={"title": "Backend lead"})
        assert response.status_code == 201
        campaign = response.json()["campaign"]
        assert campaign["status"] == "draft"
        assert campaign["rejection_policy"] == "retry_stage"
        assert campaign["rate_limits"]["daily_connection_requests"] == 15
        assert campaign["id"]

    @pytest.mark.asyncio
    async def test_invalid_rate_limits(self, app):
        """Malformed rate limits are rejected"""
        async with client_for(app) as client:
            response = await client.post(
                f"{API}/campaigns/", json={"title": "x", "rate_limits": {"timezone": "Nowhere/City"}}
            )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_activate_without_pipeline(self, app):
        """Activating a campaign with no pipeline is a 404"""
        async with client_for(app) as client:
            await client.post(f"{API}/campaigns/", json={"id": "c", "title": "C"})
            response = await client.post(f"{API}/campaigns/c/activate")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_lifecycle(self, app):
        """Activate, pause, resume and complete; invalid transitions are 409"""
        async with client_for(app) as client:
            await active_campaign(client)
            assert (await client.post(f"{API}/campaigns/camp-1/pause")).json()["campaign"]["status"] == "paused"
            assert (await client.post(f"{API}/campaigns/camp-1/pause")).status_code == 409
            assert (await client.post(f"{API}/campaigns/camp-1/resume")).json()["campaign"]["status"] == "active"
            assert (await client.post(f"{API}/campaigns/camp-1/complete")).status_code == 200
            assert (await client.post(f"{API}/campaigns/camp-1/complete")).status_code == 409

            listed = (await client.get(f"{API}/campaigns/", params={"status": "completed"})).json()
            assert [c["id"] for c in listed["campaigns"]] == ["camp-1"]

    @pytest.mark.asyncio
    async def test_unknown_campaign(self, app):
        """Unknown campaigns are 404"""
        async with client_for(app) as client:
            assert (await client.get(f"{API}/campaigns/missing")).status_code == 404
            assert (await client.get(f"{API}/campaigns/missing/rate-limits")).status_code == 404

    @pytest.mark.asyncio
    async def test_pipeline_versions(self, app):
        """Each publish creates a new version; old versions stay readable"""
        async with client_for(app) as client:
            await active_campaign(client)
            response = await client.put(
                f"{API}/campaigns/camp-1/pipeline/",
                json={"stages": [{"position": 0, "name": "Only", "action_type": "inmail", "max_attempts": 5}]},
            )
            assert response.json()["pipeline"]["version"] == 2
            assert response.json()["pipeline"]["stages"][0]["max_attempts"] == 5

            latest = (await client.get(f"{API}/campaigns/camp-1/pipeline/")).json()["pipeline"]
            first = (await client.get(f"{API}/campaigns/camp-1/pipeline/versions/1")).json()["pipeline"]
            assert latest["version"] == 2
            assert len(first["stages"]) == 2
            assert first["stages"][0]["max_attempts"] == 3

    @pytest.mark.asyncio
    async def test_invalid_pipeline(self, app):
        """Non-contiguous stage positions are rejected with the issues listed"""
        async with client_for(app) as client:
            await client.post(f"{API}/campaigns/", json={"id": "c", "title": "C"})
            response = await client.put(
                f"{API}/campaigns/c/pipeline/",
                json={"stages": [{"position": 1, "name": "Late", "action_type": "message"}]},
            )
        assert response.status_code == 422
        assert response.json()["detail"]["issues"] == ["stage positions must be contiguous from 0, got [1]"]


class TestCandidateAndApprovalEndpoints:
    """Tests for enrollment, approvals, withdrawal and reconciliation"""

    @pytest.mark.asyncio
    async def test_enroll_and_list(self, app):
        """Enrolled candidates are listed highest score first"""
        async with client_for(app) as client:
            await active_campaign(client)
            assert (await enroll(client, "cand-low")).status_code == 201
            response = await enroll(
                client, "cand-high", profile={"profile_completeness": "full", "recent_activity": True}
            )
            assert response.json()["state"]["score"]["total"] == 50.0
            assert (await enroll(client, "cand-low")).status_code == 409

            states = (await client.get(f"{API}/campaigns/camp-1/candidates/")).json()["states"]
        assert [s["candidate_id"] for s in states] == ["cand-high", "cand-low"]

    @pytest.mark.asyncio
    async def test_approval_decision_flow(self, app, harness):
        """Approving a request dispatches it and advances the candidate"""
        async with client_for(app) as client:
            await active_campaign(client)
            await enroll(client)
            await harness.tick()

            listed = (await client.get(f"{API}/approvals/", params={"campaign_id": "camp-1", "status": "pending"})).json()
            assert len(listed["approvals"]) == 1
            request_id = listed["approvals"][0]["id"]

            counts = (await client.get(f"{API}/approvals/counts", params={"campaign_id": "camp-1"})).json()
            assert counts["counts"]["pending"] == 1

            response = await client.post(
                f"{API}/approvals/{request_id}/decision",
                json={"decision": "approved", "decided_by": "recruiter@example.com"},
            )
            assert response.status_code == 200
            assert response.json()["approval"]["status"] == "approved"

            again = await client.post(
                f"{API}/approvals/{request_id}/decision",
                json={"decision": "rejected", "decided_by": "someone-else"},
            )
            assert again.status_code == 409

            await harness.orchestrator.drain()
            assert (await client.get(f"{API}/approvals/{request_id}")).json()["approval"]["status"] == "sent"
            state = (await client.get(f"{API}/campaigns/camp-1/candidates/cand-1")).json()["state"]
            assert state["current_stage_index"] == 1

            usage = (await client.get(f"{API}/campaigns/camp-1/rate-limits")).json()["usage"]
            assert usage["connection_requests"]["used"] == 1

    @pytest.mark.asyncio
    async def test_batch_decision(self, app, harness):
        """Batch decisions report per-request results"""
        async with client_for(app) as client:
            await active_campaign(client)
            await enroll(client, "cand-1")
            await enroll(client, "cand-2")
            await harness.tick()
            ids = [a["id"] for a in (await client.get(f"{API}/approvals/", params={"campaign_id": "camp-1"})).json()["approvals"]]

            response = await client.post(
                f"{API}/approvals/batch",
                json={"request_ids": ids + ["missing"], "decision": "rejected", "decided_by": "recruiter"},
            )
        data = response.json()
        assert data["succeeded"] == 2
        assert data["failed"] == 1

    @pytest.mark.asyncio
    async def test_unknown_approval(self, app):
        """Unknown approval ids are 404"""
        async with client_for(app) as client:
            response = await client.post(
                f"{API}/approvals/missing/decision", json={"decision": "approved", "decided_by": "me"}
            )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_withdraw(self, app, harness):
        """Withdrawal terminates the candidate and rejects the pending request"""
        async with client_for(app) as client:
            await active_campaign(client)
            await enroll(client)
            await harness.tick()

            response = await client.post(
                f"{API}/campaigns/camp-1/candidates/cand-1/withdraw", json={"reason": "hired elsewhere"}
            )
            assert response.status_code == 200
            state = response.json()["state"]
            assert state["terminal"] == "withdrawn"
            assert state["approvals"][0]["status"] == "rejected"

            again = await client.post(
                f"{API}/campaigns/camp-1/candidates/cand-1/withdraw", json={"reason": "again"}
            )
            assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_reconcile_without_timeout(self, app):
        """Reconciling a candidate with a known outcome is a conflict"""
        async with client_for(app) as client:
            await active_campaign(client)
            await enroll(client)
            response = await client.post(
                f"{API}/campaigns/camp-1/candidates/cand-1/reconcile", json={"outcome": "sent"}
            )
        assert response.status_code == 409


class TestScoringEndpoint:
    """Tests for ad-hoc scoring"""

    @pytest.mark.asyncio
    async def test_score_profile(self, app):
        """Scores a profile without enrolling it"""
        async with client_for(app) as client:
            response = await client.post(
                f"{API}/scoring/score",
                json={
                    "profile": {"location": "Austin, TX"},
                    "job_spec": {"remote_policy": "onsite", "location": "Denver"},
                },
            )
        score = response.json()["score"]
        assert score["hard_filter_passed"] is False
        assert score["bucket"] == "Cold"
