"""Tests for the ClickUp REST client."""

import json

import httpx
import pytest

from helpdesk.clickup.api import API_BASE, ClickUpAPI, ClickUpError


def _api(handler) -> ClickUpAPI:
    api = ClickUpAPI("pk_test")
    api._client = httpx.AsyncClient(
        base_url=API_BASE,
        headers={"Authorization": api.api_key},
        transport=httpx.MockTransport(handler),
    )
    return api


class TestRequests:
    @pytest.mark.asyncio
    async def test_get_workspaces(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"teams": [{"id": "1", "name": "TI"}]})

        api = _api(handler)
        teams = await api.get_workspaces()

        assert teams == [{"id": "1", "name": "TI"}]
        assert seen[0].url.path == "/api/v2/team"
        assert seen[0].headers["Authorization"] == "pk_test"

    @pytest.mark.asyncio
    async def test_create_task_posts_body(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "86abc"})

        api = _api(handler)
        task = await api.create_task("list-1", {"name": "VPN"})

        assert task["id"] == "86abc"
        assert bodies == [{"name": "VPN"}]

    @pytest.mark.asyncio
    async def test_comment_mapping(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "comments": [
                        {
                            "id": 55,
                            "comment_text": "Trocando o cabo",
                            "user": {"id": 7, "username": "tecnico"},
                            "date": "1773144000000",
                        }
                    ]
                },
            )

        comments = await _api(handler).get_comments("86abc")
        assert comments == [
            {
                "id": "55",
                "content": "Trocando o cabo",
                "user_id": "7",
                "user_name": "tecnico",
                "date": "1773144000000",
                "task_id": "86abc",
            }
        ]

    @pytest.mark.asyncio
    async def test_empty_body(self):
        api = _api(lambda r: httpx.Response(204))
        await api.delete_task("86abc")


class TestErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,kind",
        [(401, "auth_error"), (404, "not_found"), (429, "rate_limit"), (502, "server_error")],
    )
    async def test_status_kinds(self, status, kind):
        api = _api(lambda r: httpx.Response(status, json={}))
        with pytest.raises(ClickUpError) as exc:
            await api.get_task("x")
        assert exc.value.kind == kind
        assert exc.value.status_code == status

    @pytest.mark.asyncio
    async def test_error_message_from_body(self):
        api = _api(lambda r: httpx.Response(400, json={"err": "Status not found"}))
        with pytest.raises(ClickUpError, match="Status not found"):
            await api.update_task_status("x", "NOPE")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ClickUpError) as exc:
            await _api(handler).get_workspaces()
        assert exc.value.kind == "connection_error"

    @pytest.mark.asyncio
    async def test_validate_api_key(self):
        assert await _api(lambda r: httpx.Response(200, json={"teams": []})).validate_api_key()
        assert not await _api(lambda r: httpx.Response(401)).validate_api_key()

    @pytest.mark.asyncio
    async def test_task_exists(self):
        assert not await _api(lambda r: httpx.Response(404)).task_exists("x")
        with pytest.raises(ClickUpError):
            await _api(lambda r: httpx.Response(500)).task_exists("x")
