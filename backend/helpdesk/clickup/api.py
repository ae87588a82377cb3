"""Thin async client for the ClickUp REST API."""

from typing import Optional

import httpx

API_BASE = "https://api.clickup.com/api/v2"


class ClickUpError(Exception):
    """A ClickUp request failed.

    ``kind`` is one of auth_error, not_found, rate_limit, server_error,
    connection_error or http_error.
    """

    def __init__(self, kind: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class ClickUpAPI:
    """ClickUp v2 API client authenticated with a personal API key."""

    def __init__(self, api_key: str, timeout: float = 30.0):
        self.api_key = api_key
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=API_BASE,
                headers={
                    "Authorization": self.api_key,
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, endpoint: str, **kwargs) -> dict:
        client = await self._get_client()
        try:
            response = await client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException as e:
            raise ClickUpError("connection_error", "ClickUp request timed out") from e
        except httpx.RequestError as e:
            raise ClickUpError(
                "connection_error", f"Could not connect to the ClickUp API: {e}"
            ) from e

        if response.status_code == 401:
            raise ClickUpError("auth_error", "Invalid ClickUp API key", 401)
        if response.status_code == 404:
            raise ClickUpError("not_found", "ClickUp resource not found", 404)
        if response.status_code == 429:
            raise ClickUpError(
                "rate_limit", "ClickUp rate limit exceeded, try again shortly", 429
            )
        if not response.is_success:
            try:
                message = response.json().get("err")
            except ValueError:
                message = None
            kind = "server_error" if response.status_code >= 500 else "http_error"
            raise ClickUpError(
                kind,
                message or f"ClickUp error {response.status_code}",
                response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    async def validate_api_key(self) -> bool:
        try:
            await self.get_workspaces()
            return True
        except ClickUpError as e:
            if e.kind == "auth_error":
                return False
            raise

    async def get_workspaces(self) -> list[dict]:
        data = await self._request("GET", "/team")
        return data.get("teams", [])

    async def get_spaces(self, workspace_id: str) -> list[dict]:
        data = await self._request("GET", f"/team/{workspace_id}/space")
        return data.get("spaces", [])

    async def get_lists(self, space_id: str) -> list[dict]:
        data = await self._request("GET", f"/space/{space_id}/list")
        return data.get("lists", [])

    async def get_users(self, workspace_id: str) -> list[dict]:
        """Members of a workspace."""
        data = await self._request("GET", f"/team/{workspace_id}/user")
        return data.get("users", [])

    async def create_task(self, list_id: str, task: dict) -> dict:
        return await self._request("POST", f"/list/{list_id}/task", json=task)

    async def update_task(self, task_id: str, changes: dict) -> dict:
        return await self._request("PUT", f"/task/{task_id}", json=changes)

    async def update_task_status(self, task_id: str, status: str) -> dict:
        return await self.update_task(task_id, {"status": status})

    async def delete_task(self, task_id: str) -> None:
        await self._request("DELETE", f"/task/{task_id}")

    async def add_comment(
        self, task_id: str, text: str, assignee: Optional[str] = None
    ) -> dict:
        body = {"comment_text": text, "notify_all": True}
        if assignee:
            body["assignee"] = assignee
        return await self._request("POST", f"/task/{task_id}/comment", json=body)

    async def get_comments(self, task_id: str) -> list[dict]:
        data = await self._request("GET", f"/task/{task_id}/comment")
        return [
            {
                "id": str(c.get("id")),
                "content": c.get("comment_text", ""),
                "user_id": str(c.get("user", {}).get("id", "")),
                "user_name": c.get("user", {}).get("username"),
                "date": c.get("date"),
                "task_id": task_id,
            }
            for c in data.get("comments", [])
        ]

    async def get_task(self, task_id: str) -> dict:
        return await self._request("GET", f"/task/{task_id}")

    async def task_exists(self, task_id: str) -> bool:
        try:
            await self.get_task(task_id)
            return True
        except ClickUpError as e:
            if e.kind == "not_found":
                return False
            raise
