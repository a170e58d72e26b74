"""
Code Journal Backend — API Integration Tests
=============================================

Drives the FastAPI app through httpx.AsyncClient with ASGITransport: real
routing, middleware, dependency injection and exception handlers, over a
per-test SQLite database and storage root.

What we test:
    ✅ The end-to-end journal scenarios (publish, duplicate path, premature
       approval, threaded comments, terminal lock, reconciliation)
    ✅ Error body shape and status codes
    ✅ Bearer authentication
    ✅ Foreign journal token guard on /federation
    ✅ Health endpoint
    ✅ User query parameters and ordering
"""

import pytest
import pytest_asyncio

from codejournal.middleware.security_token import GROUP_HEADER, TOKEN_HEADER
from codejournal.services.user_service import user_service

from conftest import TEST_PASSWORD, b64


async def register_and_login(client, email, capabilities, first="Ada", last="Lovelace"):
    response = await client.post(
        "/api/auth/register",
        json={
            "email": email,
            "password": TEST_PASSWORD,
            "firstName": first,
            "lastName": last,
            "capabilities": capabilities,
        },
    )
    assert response.status_code == 200, response.text
    user_id = response.json()["userId"]
    response = await client.post("/api/auth/login", json={"email": email, "password": TEST_PASSWORD})
    assert response.status_code == 200, response.text
    token = response.json()["accessToken"]
    return user_id, {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def journal(client):
    """U1 publisher and U2 reviewer + editor (promoted through EDITOR_EMAILS)."""
    u1, h1 = await register_and_login(client, "u1@example.com", ["publisher"])
    u2, h2 = await register_and_login(client, "editor@example.com", ["reviewer"], "Grace", "Hopper")
    return {"u1": u1, "h1": h1, "u2": u2, "h2": h2}


async def create_demo(client, journal, reviewers=None):
    response = await client.post(
        "/api/submissions",
        headers=journal["h1"],
        json={
            "name": "demo",
            "license": "MIT",
            "abstract": "hello",
            "tags": ["c"],
            "authors": [journal["u1"]],
            "reviewers": reviewers if reviewers is not None else [journal["u2"]],
            "files": [{"path": "main.c", "base64Value": b64("int main(){}")}],
        },
    )
    assert response.status_code == 200, response.text
    return response.json()["id"]


async def first_file_id(client, submission_id):
    response = await client.get(f"/api/submissions/{submission_id}")
    return response.json()["files"][0]["id"]


async def approve(client, journal, submission_id):
    response = await client.post(
        f"/api/submissions/{submission_id}/reviews",
        headers=journal["h2"],
        json={"approved": True, "base64Value": b64("lgtm")},
    )
    assert response.status_code == 200, response.text
    response = await client.post(
        f"/api/submissions/{submission_id}/approval",
        headers=journal["h2"],
        json={"status": True},
    )
    assert response.status_code == 200, response.text
    return response


# ══════════════════════════════════════════════════════════════════════════
# Scenarios
# ══════════════════════════════════════════════════════════════════════════

class TestScenarios:
    @pytest.mark.asyncio
    async def test_happy_path_publish(self, client, journal):
        submission_id = await create_demo(client, journal)
        response = await approve(client, journal, submission_id)
        assert response.json() == {"id": submission_id, "approval": "approved", "changed": True}

        response = await client.get(f"/api/submissions/{submission_id}")
        assert response.status_code == 200
        assert response.headers["Cache-Control"] == "no-store"
        body = response.json()
        assert body["approval"] == "approved"
        assert len(body["reviews"]) == 1
        assert body["reviews"][0]["reviewer"] == journal["u2"]
        assert body["authors"] == [{"userId": journal["u1"], "fullName": "Ada Lovelace"}]
        assert body["files"][0]["base64Value"] == b64("int main(){}")

    @pytest.mark.asyncio
    async def test_duplicate_path(self, client, journal):
        submission_id = await create_demo(client, journal)
        response = await client.post(
            f"/api/submissions/{submission_id}/files",
            headers=journal["h1"],
            json={"path": "main.c", "base64Value": b64("other")},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_file"

        body = (await client.get(f"/api/submissions/{submission_id}")).json()
        assert [f["path"] for f in body["files"]] == ["main.c"]
        assert body["files"][0]["base64Value"] == b64("int main(){}")

    @pytest.mark.asyncio
    async def test_premature_approval(self, client, journal):
        u3, h3 = await register_and_login(client, "u3@example.com", ["reviewer"])
        submission_id = await create_demo(client, journal, reviewers=[journal["u2"], u3])
        response = await client.post(
            f"/api/submissions/{submission_id}/reviews",
            headers=journal["h2"],
            json={"approved": True, "base64Value": b64("ok")},
        )
        assert response.status_code == 200

        response = await client.post(
            f"/api/submissions/{submission_id}/approval",
            headers=journal["h2"],
            json={"status": True},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "missing_reviews"

        body = (await client.get(f"/api/submissions/{submission_id}")).json()
        assert body["approval"] == "unset"
        assert body["state"] == "review_pending"

    @pytest.mark.asyncio
    async def test_threaded_comments(self, client, journal):
        submission_id = await create_demo(client, journal)
        file_id = await first_file_id(client, submission_id)

        parent = None
        ids = []
        for text in ("c1", "c2", "c3"):
            payload = {"startLine": 1, "endLine": 1, "base64Value": b64(text)}
            if parent is not None:
                payload["parentId"] = parent
            response = await client.post(
                f"/api/files/{file_id}/comments", headers=journal["h2"], json=payload
            )
            assert response.status_code == 200, response.text
            parent = response.json()["id"]
            ids.append(parent)

        response = await client.get(f"/api/submissions/{submission_id}/files/{file_id}")
        forest = response.json()["comments"]
        assert [node["id"] for node in forest] == [ids[0]]
        assert forest[0]["replies"][0]["id"] == ids[1]
        assert forest[0]["replies"][0]["replies"][0]["id"] == ids[2]

    @pytest.mark.asyncio
    async def test_terminal_lock(self, client, journal, fs_store):
        submission_id = await create_demo(client, journal)
        file_id = await first_file_id(client, submission_id)
        await approve(client, journal, submission_id)
        before = fs_store.sidecar_path(submission_id, "demo", "main.c").read_bytes()

        response = await client.post(
            f"/api/files/{file_id}/comments",
            headers=journal["h1"],
            json={"startLine": 1, "endLine": 1, "base64Value": b64("too late")},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "submission_approved"
        assert fs_store.sidecar_path(submission_id, "demo", "main.c").read_bytes() == before

    @pytest.mark.asyncio
    async def test_reconciliation(self, client, journal, fs_store):
        submission_id = await create_demo(client, journal)
        await fs_store.remove_submission(submission_id)

        response = await client.post("/api/maintenance/reconcile", headers=journal["h2"])
        assert response.status_code == 200, response.text
        assert response.json()["missingOnDisk"] == [submission_id]

        body = (await client.get(f"/api/submissions/{submission_id}")).json()
        assert body["degraded"] is True
        assert body["files"][0]["degraded"] is True
        assert body["files"][0]["base64Value"] is None


# ══════════════════════════════════════════════════════════════════════════
# Errors & auth
# ══════════════════════════════════════════════════════════════════════════

class TestErrors:
    @pytest.mark.asyncio
    async def test_file_under_existing_file_is_409(self, client, journal):
        submission_id = await create_demo(client, journal)
        response = await client.post(
            f"/api/submissions/{submission_id}/files",
            headers=journal["h1"],
            json={"path": "main.c/inner.c", "base64Value": b64("x")},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_file"

    @pytest.mark.asyncio
    async def test_error_body_shape(self, client):
        response = await client.get("/api/submissions/424242", headers={"X-Request-ID": "abc123"})
        assert response.status_code == 404
        body = response.json()
        assert set(body) == {"error", "message", "details", "request_id"}
        assert body["error"] == "no_submission"
        assert body["request_id"] == "abc123"
        assert response.headers["X-Request-ID"] == "abc123"

    @pytest.mark.asyncio
    async def test_request_validation_is_400(self, client, journal):
        response = await client.post("/api/submissions", headers=journal["h1"], json={"name": 5})
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, client):
        response = await client.post("/api/submissions", json={"name": "x"})
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_garbage_token_is_401(self, client):
        response = await client.post(
            "/api/submissions", headers={"Authorization": "Bearer nope"}, json={"name": "x"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_duplicate_email_is_409(self, client, journal):
        response = await client.post(
            "/api/auth/register",
            json={
                "email": "u1@example.com",
                "password": TEST_PASSWORD,
                "firstName": "A",
                "lastName": "B",
            },
        )
        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_email"

    @pytest.mark.asyncio
    async def test_non_reviewer_review_is_401(self, client, journal):
        submission_id = await create_demo(client, journal)
        response = await client.post(
            f"/api/submissions/{submission_id}/reviews",
            headers=journal["h1"],
            json={"approved": True, "base64Value": ""},
        )
        assert response.status_code == 401
        assert response.json()["error"] == "not_reviewer"

    @pytest.mark.asyncio
    async def test_delete_then_404(self, client, journal):
        submission_id = await create_demo(client, journal)
        response = await client.delete(f"/api/submissions/{submission_id}", headers=journal["h1"])
        assert response.status_code == 200
        response = await client.get(f"/api/submissions/{submission_id}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_profile_lists_submissions(self, client, journal):
        submission_id = await create_demo(client, journal)
        response = await client.get(f"/api/users/{journal['u1']}")
        assert response.status_code == 200
        assert response.json()["submissions"] == [submission_id]


# ══════════════════════════════════════════════════════════════════════════
# Federation & health
# ══════════════════════════════════════════════════════════════════════════

class TestFederation:
    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/federation/submissions")
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_wrong_token(self, client, db):
        await user_service.ensure_self_server(db)
        response = await client.get("/federation/submissions", headers={TOKEN_HEADER: "forged"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_valid_token_lists_approved(self, client, journal, db):
        server = await user_service.ensure_self_server(db)
        submission_id = await create_demo(client, journal)
        await approve(client, journal, submission_id)

        response = await client.get(
            "/federation/submissions",
            headers={TOKEN_HEADER: server.token, GROUP_HEADER: str(server.group_number)},
        )
        assert response.status_code == 200
        assert response.json() == {str(submission_id): "demo"}

    @pytest.mark.asyncio
    async def test_group_mismatch(self, client, db):
        server = await user_service.ensure_self_server(db)
        response = await client.get(
            "/federation/submissions",
            headers={TOKEN_HEADER: server.token, GROUP_HEADER: str(server.group_number + 1)},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_federated_user(self, client, journal, db):
        server = await user_service.ensure_self_server(db)
        response = await client.get(
            f"/federation/users/{journal['u1']}", headers={TOKEN_HEADER: server.token}
        )
        assert response.status_code == 200
        assert response.json()["firstName"] == "Ada"
        assert "email" not in response.json()


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"


class TestUserQuery:
    @pytest.mark.asyncio
    async def test_query_by_type_and_order(self, client, journal):
        response = await client.get("/api/users/query", params={"userType": "editor"})
        assert response.status_code == 200, response.text
        body = response.json()
        assert [u["userId"] for u in body["users"]] == [journal["u2"]]
        assert "passwordHash" not in body["users"][0]

        response = await client.get("/api/users/query", params={"orderBy": "lastName"})
        assert [u["lastName"] for u in response.json()["users"]] == ["Hopper", "Lovelace"]

    @pytest.mark.asyncio
    async def test_bad_parameter_is_400(self, client, journal):
        response = await client.get("/api/users/query", params={"orderBy": "age"})
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
