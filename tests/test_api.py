"""
API endpoint tests.

Exercise the HTTP host layer end to end against the test database, including
the mapping from service exceptions to status codes.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from esg_ledger.models.audit import AuditLog


API = "/api/v1"


async def _create_workflow(client: AsyncClient, **overrides) -> str:
    payload = {
        "data_id": "DATA_1",
        "data_type": "emissions_report",
        "submitted_by": "alice",
        "submitter_email": "alice@x.com",
        **overrides,
    }
    response = await client.post(f"{API}/workflows", json=payload)
    assert response.status_code == 201
    return response.json()["workflow_id"]


class TestAuditTrailEndpoints:

    @pytest.mark.asyncio
    async def test_append_and_verify(self, client: AsyncClient):
        response = await client.post(
            f"{API}/audit-trail",
            json={
                "action": "update",
                "table_name": "emissions",
                "record_id": "E1",
                "user_id": "alice",
                "old_values": {"tonnes": 10},
                "new_values": {"tonnes": 12},
            },
            headers={"User-Agent": "esg-client/1.0", "X-Session-ID": "sess-9"},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["id"] == 1
        assert len(body["hash"]) == 64

        response = await client.get(f"{API}/audit-trail/verify")
        assert response.status_code == 200
        assert response.json() == {
            "is_valid": True,
            "total_entries": 1,
            "invalid_entries": [],
            "discrepancies": [],
            "last_verified_id": 1,
        }

        entry = (await client.get(f"{API}/audit-trail/1")).json()
        assert entry["user_agent"] == "esg-client/1.0"
        assert entry["session_id"] == "sess-9"
        assert entry["previous_hash"] == "0"

    @pytest.mark.asyncio
    async def test_tampering_reported_in_body(self, client: AsyncClient, db_session):
        for i in range(3):
            await client.post(
                f"{API}/audit-trail",
                json={"action": "create", "table_name": "t", "record_id": str(i), "user_id": "u"},
            )
        await db_session.execute(
            update(AuditLog.__table__).where(AuditLog.__table__.c.id == 2).values(action="delete")
        )
        await db_session.commit()

        response = await client.get(f"{API}/audit-trail/verify", params={"start_id": 1, "end_id": 3})
        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is False
        assert data["invalid_entries"] == [2]
        assert data["discrepancies"][0]["type"] == "hash_mismatch"

    @pytest.mark.asyncio
    async def test_query_filters(self, client: AsyncClient):
        for table in ("emissions", "energy", "energy"):
            await client.post(
                f"{API}/audit-trail",
                json={"action": "create", "table_name": table, "record_id": "R", "user_id": "u"},
            )

        response = await client.get(f"{API}/audit-trail", params={"table_name": "energy", "limit": 5})
        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [e["id"] for e in data["entries"]] == [3, 2]

    @pytest.mark.asyncio
    async def test_missing_entry_is_404(self, client: AsyncClient):
        response = await client.get(f"{API}/audit-trail/999")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "AUDIT_ENTRY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_bad_date_is_422(self, client: AsyncClient):
        response = await client.get(f"{API}/audit-trail", params={"start_date": "yesterday"})
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_missing_fields_is_422(self, client: AsyncClient):
        response = await client.post(f"{API}/audit-trail", json={"action": "create"})
        assert response.status_code == 422


class TestWorkflowEndpoints:

    @pytest.mark.asyncio
    async def test_full_approval(self, client: AsyncClient):
        wf_id = await _create_workflow(client)

        levels = []
        for approver in ("bob", "dan", "erin", "frank"):
            response = await client.post(
                f"{API}/workflows/{wf_id}/approve",
                json={"approver_id": approver, "comments": "ok"},
            )
            assert response.status_code == 200
            levels.append(response.json()["current_level"])
        assert levels == ["business_unit", "group_esg", "executive", None]

        workflow = (await client.get(f"{API}/workflows/{wf_id}")).json()
        assert workflow["status"] == "approved"
        assert workflow["completed_at"] is not None
        assert [s["status"] for s in workflow["steps"]] == ["approved"] * 4

        history = (await client.get(f"{API}/workflows/{wf_id}/history")).json()
        assert [e["action"] for e in history] == ["workflow_created"] + ["workflow_approved"] * 4

    @pytest.mark.asyncio
    async def test_reject_then_approve_is_409(self, client: AsyncClient):
        wf_id = await _create_workflow(client)

        response = await client.post(
            f"{API}/workflows/{wf_id}/reject",
            json={"approver_id": "bob", "approver_email": "bob@x.com", "comments": "no"},
        )
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "workflow_id": wf_id,
            "status": "rejected",
            "current_level": None,
        }

        response = await client.post(f"{API}/workflows/{wf_id}/approve", json={"approver_id": "carol"})
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "WORKFLOW_ALREADY_TERMINAL"

    @pytest.mark.asyncio
    async def test_unknown_workflow_is_404(self, client: AsyncClient):
        response = await client.post(f"{API}/workflows/WF_0_none00/approve", json={"approver_id": "bob"})
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "WORKFLOW_NOT_FOUND"

        response = await client.get(f"{API}/workflows/WF_0_none00")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_pending(self, client: AsyncClient):
        first = await _create_workflow(client, data_id="D1")
        second = await _create_workflow(client, data_id="D2")
        await client.post(f"{API}/workflows/{second}/approve", json={"approver_id": "bob"})

        response = await client.get(f"{API}/workflows/pending", params={"level": "site"})
        assert response.status_code == 200
        assert [w["workflow_id"] for w in response.json()] == [first]

        response = await client.get(f"{API}/workflows/pending")
        assert len(response.json()) == 2

    @pytest.mark.asyncio
    async def test_pending_unknown_level_is_422(self, client: AsyncClient):
        response = await client.get(f"{API}/workflows/pending", params={"level": "board"})
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_APPROVAL_LEVEL"


class TestNotificationEndpoints:

    @pytest.mark.asyncio
    async def test_process_and_stats(self, client: AsyncClient, transport, no_inline_delivery, approver_emails):
        await _create_workflow(client)

        stats = (await client.get(f"{API}/notifications/stats")).json()
        assert stats == {"pending": 1, "sent": 0, "failed": 0}

        response = await client.post(f"{API}/notifications/process")
        assert response.status_code == 200
        data = response.json()
        assert data["processed"] == 1
        assert data["results"][0]["status"] == "sent"
        transport.send.assert_awaited_once()

        stats = (await client.get(f"{API}/notifications/stats")).json()
        assert stats == {"pending": 0, "sent": 1, "failed": 0}


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
