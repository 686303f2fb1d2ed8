"""
tests/test_audit_routes.py -- Integration tests for GET /api/audit-logs.

Coverage:
  - admin callers get newest-first records with camelCase keys
  - userId / actionType / status / limit filters
  - every query is itself recorded as AUDIT_QUERY
  - non-admin callers get 403 and a forbidden AUDIT_QUERY failure record
  - missing or invalid tokens get 401
"""

from __future__ import annotations

import pytest

from auth.models import ActionStatus, ActionType, AuditEvent
from auth.tokens import issue_token

AUDIT = "/api/audit-logs"


def _bearer(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token(user)}"}


@pytest.fixture
def seeded(recorder):
    """Three LOGIN / REGISTER records for two users."""
    for user_id, action, status in [
        (1, ActionType.REGISTER, ActionStatus.SUCCESS),
        (1, ActionType.LOGIN, ActionStatus.FAILURE),
        (2, ActionType.LOGIN, ActionStatus.SUCCESS),
    ]:
        recorder.record(
            AuditEvent(action_type=action, status=status, user_id=user_id, ip_address="198.51.100.4")
        )
    recorder.flush()
    return recorder


class TestAdminQuery:
    def test_lists_newest_first(self, client, admin, seeded):
        resp = client.get(AUDIT, headers=_bearer(admin))
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["success"] is True
        records = body["records"]
        assert [r["actionType"] for r in records] == ["LOGIN", "LOGIN", "REGISTER"]
        assert set(records[0]) == {
            "id",
            "userId",
            "actionType",
            "status",
            "ipAddress",
            "userAgent",
            "details",
            "createdAt",
        }
        assert records[0]["id"] > records[-1]["id"]

    def test_filters(self, client, admin, seeded):
        headers = _bearer(admin)
        by_user = client.get(AUDIT, params={"userId": 1}, headers=headers).json()["records"]
        assert {r["userId"] for r in by_user} == {1}
        assert len(by_user) == 2

        by_type = client.get(AUDIT, params={"actionType": "LOGIN", "status": "failure"}, headers=headers).json()
        assert len(by_type["records"]) == 1
        assert by_type["records"][0]["userId"] == 1

        limited = client.get(AUDIT, params={"limit": 1}, headers=headers).json()["records"]
        assert len(limited) == 1

    def test_query_is_itself_audited(self, client, admin, seeded):
        client.get(AUDIT, params={"actionType": "LOGIN"}, headers=_bearer(admin))
        seeded.flush()
        [rec] = seeded.list_records(action_type=ActionType.AUDIT_QUERY)
        assert rec.status == "success"
        assert rec.user_id == admin.id
        assert rec.details == {"actionType": "LOGIN", "limit": 100}
        assert rec.ip_address == "testclient"

    @pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 501}, {"actionType": "DELETE"}, {"status": "maybe"}])
    def test_invalid_filters_422(self, client, admin, params):
        resp = client.get(AUDIT, params=params, headers=_bearer(admin))
        assert resp.status_code == 422
        assert resp.json()["success"] is False


class TestAccessControl:
    def test_regular_user_forbidden_and_recorded(self, client, create_user, recorder):
        user = create_user("alice")
        resp = client.get(AUDIT, params={"userId": 2}, headers=_bearer(user))
        assert resp.status_code == 403
        assert resp.json() == {"success": False, "message": "Admin access required"}
        recorder.flush()
        [rec] = recorder.list_records()
        assert rec.action_type == "AUDIT_QUERY"
        assert rec.status == "failure"
        assert rec.user_id == user.id
        assert rec.details == {"reason": "forbidden", "userId": 2, "limit": 100}

    def test_missing_token_401(self, client, recorder):
        resp = client.get(AUDIT)
        assert resp.status_code == 401
        recorder.flush()
        assert recorder.list_records() == []

    def test_invalid_token_401(self, client):
        assert client.get(AUDIT, headers={"Authorization": "Bearer forged"}).status_code == 401

    def test_no_write_methods(self, client, admin):
        headers = _bearer(admin)
        assert client.post(AUDIT, json={}, headers=headers).status_code == 405
        assert client.delete(AUDIT, headers=headers).status_code == 405
