"""Tests for outbound webhook delivery and the retry queue."""

import httpx
import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

from helpdesk.errors import NotFoundError, ValidationError
from helpdesk.models import WebhookQueueItem, utcnow
from helpdesk.webhooks import (
    CLICKUP_TIME_ESTIMATE_MS,
    WebhookDeliveryError,
    WebhookDispatcher,
    WebhookResponse,
    build_payload,
    combine_responses,
    create_webhook,
    delete_webhook,
    extract_response,
    get_webhook,
    list_webhooks,
    to_epoch_ms,
    update_webhook,
)


def _dispatcher(db_session, handler) -> WebhookDispatcher:
    dispatcher = WebhookDispatcher(db_session)
    dispatcher._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return dispatcher


@pytest.fixture
def no_sleep():
    with patch("helpdesk.webhooks.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


@pytest.fixture
def webhook(db_session, regular_user):
    return create_webhook(
        db_session,
        regular_user,
        {
            "name": "n8n",
            "url": "https://hooks.example.com/tickets",
            "events": ["ticket.created", "ticket.updated"],
            "headers": {"Authorization": "Bearer abc"},
        },
    )


class TestPayload:
    def test_epoch_ms(self):
        assert to_epoch_ms(datetime(1970, 1, 1, 0, 0, 1)) == 1000

    def test_build_payload(self, sample_ticket, regular_user):
        now = datetime(2026, 3, 10, 12, 0)
        payload = build_payload(
            "ticket.created", sample_ticket, creator=regular_user, now=now
        )

        assert payload["event"] == "ticket.created"
        assert payload["timestamp"] == "2026-03-10T12:00:00Z"
        data = payload["data"]
        assert data["creator"]["email"] == "maria@example.com"
        assert data["deadline"]["timestamp"] == to_epoch_ms(sample_ticket.deadline)
        assert data["deadline"]["iso"].endswith("Z")
        assert data["url"].endswith("/tickets/ticket-1")
        assert data["clickup"]["status"] == "ABERTO"
        assert data["clickup"]["priority"] == 3
        assert data["clickup"]["time_estimate"] == CLICKUP_TIME_ESTIMATE_MS

    def test_extra_fields_merged(self, sample_ticket):
        payload = build_payload(
            "ticket.status_changed", sample_ticket, extra={"previous_status": "open"}
        )
        assert payload["data"]["previous_status"] == "open"
        assert payload["data"]["creator"] is None


class TestExtractResponse:
    def test_top_level_ids(self):
        result = extract_response({"id": 123, "gmailId": "g-1"})
        assert result.task_id == "123"
        assert result.gmail_id == "g-1"

    def test_nested_ids(self):
        result = extract_response({"task": {"id": "t-9"}, "gmail": {"id": "m-2"}})
        assert result.task_id == "t-9"
        assert result.gmail_id == "m-2"

    def test_non_dict_body(self):
        assert extract_response(["x"]).is_empty()

    def test_combine_later_wins(self):
        combined = combine_responses(
            [WebhookResponse(task_id="a"), WebhookResponse(task_id="b", gmail_id="g")]
        )
        assert combined.task_id == "b"
        assert combined.gmail_id == "g"
        assert combine_responses([]) is None


class TestDispatch:
    @pytest.mark.asyncio
    async def test_delivers_to_subscribed_webhooks(
        self, db_session, webhook, sample_ticket
    ):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"taskId": "86abc"})

        dispatcher = _dispatcher(db_session, handler)
        response = await dispatcher.dispatch("ticket.created", sample_ticket)

        assert response.task_id == "86abc"
        assert len(seen) == 1
        assert seen[0].headers["Authorization"] == "Bearer abc"

    @pytest.mark.asyncio
    async def test_unsubscribed_event_sends_nothing(
        self, db_session, webhook, sample_ticket
    ):
        dispatcher = _dispatcher(db_session, lambda r: httpx.Response(200))
        assert await dispatcher.dispatch("ticket.deleted", sample_ticket) is None

    @pytest.mark.asyncio
    async def test_inactive_webhook_skipped(self, db_session, webhook, sample_ticket):
        webhook.active = False
        db_session.commit()
        dispatcher = _dispatcher(db_session, lambda r: httpx.Response(200))
        assert dispatcher.active_webhooks("ticket.created") == []

    @pytest.mark.asyncio
    async def test_retries_server_errors(
        self, db_session, webhook, sample_ticket, no_sleep
    ):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={})

        dispatcher = _dispatcher(db_session, handler)
        await dispatcher.dispatch("ticket.created", sample_ticket)

        assert len(calls) == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [1.0, 2.0]
        assert db_session.query(WebhookQueueItem).count() == 0

    @pytest.mark.asyncio
    async def test_client_error_queued_without_retry(
        self, db_session, webhook, sample_ticket, no_sleep
    ):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, text="bad payload")

        dispatcher = _dispatcher(db_session, handler)
        response = await dispatcher.dispatch("ticket.created", sample_ticket)

        assert response is None
        assert len(calls) == 1
        item = db_session.query(WebhookQueueItem).one()
        assert item.status == "pending"
        assert item.event == "ticket.created"
        assert item.headers == {"Authorization": "Bearer abc"}

    @pytest.mark.asyncio
    async def test_connection_error_queued_after_retries(
        self, db_session, webhook, sample_ticket, no_sleep
    ):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        dispatcher = _dispatcher(db_session, handler)
        await dispatcher.dispatch("ticket.created", sample_ticket)

        assert no_sleep.await_count == dispatcher.max_retries
        item = db_session.query(WebhookQueueItem).one()
        assert "connect" in item.error["message"]


class TestQueue:
    def _item(self, db_session, **overrides):
        values = dict(
            url="https://hooks.example.com/tickets",
            headers={},
            event="ticket.updated",
            payload={"event": "ticket.updated"},
            status="pending",
            attempts=0,
            max_attempts=3,
            next_attempt=utcnow() - timedelta(minutes=1),
        )
        values.update(overrides)
        item = WebhookQueueItem(**values)
        db_session.add(item)
        db_session.commit()
        return item

    @pytest.mark.asyncio
    async def test_success_marks_completed(self, db_session):
        item = self._item(db_session)
        dispatcher = _dispatcher(db_session, lambda r: httpx.Response(200))

        result = await dispatcher.process_queue()

        assert result == {"processed": 1, "completed": 1, "failed": 0}
        assert item.status == "completed"
        assert item.completed_at is not None

    @pytest.mark.asyncio
    async def test_failure_backs_off(self, db_session):
        now = utcnow()
        item = self._item(db_session, attempts=1)
        dispatcher = _dispatcher(db_session, lambda r: httpx.Response(404))

        await dispatcher.process_queue(now=now)

        assert item.status == "pending"
        assert item.attempts == 2
        assert item.next_attempt == now + timedelta(minutes=10)
        assert item.error["code"] == "not_found"
        assert item.error["status_code"] == 404

    @pytest.mark.asyncio
    async def test_last_attempt_marks_failed(self, db_session):
        item = self._item(db_session, attempts=2)
        dispatcher = _dispatcher(db_session, lambda r: httpx.Response(404))

        result = await dispatcher.process_queue()

        assert result["failed"] == 1
        assert item.status == "failed"
        assert item.attempts == 3

    @pytest.mark.asyncio
    async def test_future_items_skipped(self, db_session):
        self._item(db_session, next_attempt=utcnow() + timedelta(hours=1))
        dispatcher = _dispatcher(db_session, lambda r: httpx.Response(200))
        assert (await dispatcher.process_queue())["processed"] == 0

    def test_cleanup_keeps_recent_and_pending(self, db_session):
        old = utcnow() - timedelta(days=8)
        self._item(db_session, status="completed", created_at=old)
        self._item(db_session, status="failed", created_at=old)
        self._item(db_session, status="pending", created_at=old)
        self._item(db_session, status="completed")

        dispatcher = WebhookDispatcher(db_session)
        assert dispatcher.cleanup_queue() == 2
        assert db_session.query(WebhookQueueItem).count() == 2


class TestWebhookTest:
    @pytest.mark.asyncio
    async def test_uses_test_url(self, db_session, webhook):
        webhook.test_url = "https://hooks.example.com/test"
        urls = []

        def handler(request):
            urls.append(str(request.url))
            return httpx.Response(200, json={"ok": True})

        dispatcher = _dispatcher(db_session, handler)
        result = await dispatcher.test_webhook(webhook)

        assert urls == ["https://hooks.example.com/test"]
        assert result["response"] == {"ok": True}

    @pytest.mark.asyncio
    async def test_error_status_raises(self, db_session, webhook):
        dispatcher = _dispatcher(db_session, lambda r: httpx.Response(500, text="boom"))
        with pytest.raises(WebhookDeliveryError) as exc:
            await dispatcher.test_webhook(webhook, {"event": "ping"})
        assert exc.value.status_code == 500
        assert exc.value.body == "boom"


class TestWebhookConfigs:
    def test_owner_scoped(self, db_session, webhook, regular_user, other_user):
        assert list_webhooks(db_session, regular_user) == [webhook]
        assert list_webhooks(db_session, other_user) == []
        with pytest.raises(NotFoundError):
            get_webhook(db_session, webhook.id, other_user)

    def test_unknown_event_rejected(self, db_session, regular_user):
        with pytest.raises(ValidationError, match="ticket.exploded"):
            create_webhook(
                db_session,
                regular_user,
                {"name": "x", "url": "https://x", "events": ["ticket.exploded"]},
            )

    def test_update_and_delete(self, db_session, webhook, regular_user):
        updated = update_webhook(
            db_session, webhook.id, regular_user, {"active": False, "name": None}
        )
        assert updated.active is False
        assert updated.name == "n8n"

        delete_webhook(db_session, webhook.id, regular_user)
        assert list_webhooks(db_session, regular_user) == []
