"""Outbound webhook delivery.

Ticket events are POSTed to every active webhook subscribed to the event.
Each delivery is retried a few times on transient errors; deliveries that
still fail are parked in the webhook queue and retried by a scheduled job.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from .config import get_settings
from .errors import NotFoundError, ValidationError
from .models import Ticket, User, WebhookConfig, WebhookQueueItem, utcnow
from .ticket_rules import CLICKUP_PRIORITY_MAP, CLICKUP_STATUS_MAP

settings = get_settings()
logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = (
    "ticket.created",
    "ticket.updated",
    "ticket.status_changed",
    "ticket.comment_added",
    "ticket.comment_deleted",
    "ticket.assigned",
    "ticket.deleted",
)

# Immediate retry policy for a single delivery
RETRY_DELAY_SECONDS = 1.0
RETRYABLE_ERRORS = {
    "timeout",
    "connection_error",
    "request_error",
    "server_error",
    "rate_limit",
}

# Queue retry policy
QUEUE_BACKOFF = timedelta(minutes=5)
CLEANUP_BATCH_SIZE = 100

# Fixed ClickUp task fields expected by the automation receiving the payload
CLICKUP_TIME_ESTIMATE_MS = 8640000
CLICKUP_POINTS = 3

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


class WebhookDeliveryError(Exception):
    """A webhook endpoint could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass
class WebhookResponse:
    """Identifiers extracted from a webhook receiver's response body.

    Attributes:
        task_id: External task created by the receiver (e.g. a ClickUp task)
        gmail_id: Id of an email thread created by the receiver
        status: Status reported back by the receiver
        priority: Priority reported back by the receiver
    """

    task_id: Optional[str] = None
    gmail_id: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.task_id or self.gmail_id or self.status or self.priority)


@dataclass
class DeliveryResult:
    webhook_id: str
    url: str
    success: bool
    response: Optional[WebhookResponse] = None
    error: Optional[str] = None


def _categorize_error(e: Exception) -> tuple[str, str]:
    """Categorize an httpx exception for retry decisions and logging.

    Returns (error_type, human readable message).
    """
    if isinstance(e, httpx.HTTPStatusError):
        status = e.response.status_code
        if status == 401:
            return "auth_error", "Authentication failed"
        elif status == 403:
            return "permission_error", "Permission denied"
        elif status == 404:
            return "not_found", "Endpoint not found"
        elif status == 429:
            return "rate_limit", "Rate limited by receiver"
        elif status >= 500:
            return "server_error", f"Server error ({status})"
        else:
            return "http_error", f"HTTP error {status}: {e.response.text[:100]}"
    elif isinstance(e, httpx.TimeoutException):
        return "timeout", "Request timed out"
    elif isinstance(e, httpx.ConnectError):
        return "connection_error", "Could not connect to webhook receiver"
    elif isinstance(e, httpx.RequestError):
        return "request_error", f"Request failed: {str(e)}"
    else:
        return "unknown_error", str(e)


# =============================================================================
# Payload
# =============================================================================


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def to_epoch_ms(value: datetime) -> int:
    """Milliseconds since the epoch for a naive UTC datetime."""
    return int((value - datetime(1970, 1, 1)).total_seconds() * 1000)


def serialize_ticket(ticket: Ticket) -> dict:
    """Plain dict view of a ticket, used in webhook payloads."""
    return {
        "id": ticket.id,
        "title": ticket.title,
        "description": ticket.description,
        "category": ticket.category,
        "priority": ticket.priority,
        "status": ticket.status,
        "deadline": _iso(ticket.deadline),
        "user_id": ticket.user_id,
        "assigned_to": ticket.assigned_to_id,
        "assigned_to_name": ticket.assigned_to_name,
        "task_id": ticket.task_id,
        "gmail_id": ticket.gmail_id,
        "priority_locked_by": ticket.priority_locked_by,
        "priority_locked_at": _iso(ticket.priority_locked_at),
        "priority_reason": ticket.priority_reason,
        "created_at": _iso(ticket.created_at),
        "updated_at": _iso(ticket.updated_at),
        "comments": [
            {
                "id": c.id,
                "user_id": c.user_id,
                "user_name": c.user_name,
                "content": c.content,
                "created_at": _iso(c.created_at),
            }
            for c in ticket.comments
        ],
        "attachments": [
            {
                "id": a.id,
                "file_name": a.file_name,
                "file_url": a.file_url,
                "file_type": a.file_type,
            }
            for a in ticket.attachments
        ],
    }


def ticket_url(ticket_id: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/tickets/{ticket_id}"


def build_payload(
    event: str,
    ticket: Ticket,
    creator: Optional[User] = None,
    extra: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Build the ``{event, data, timestamp}`` body sent to webhook receivers.

    ``data`` is the serialized ticket enriched with its creator, a deadline
    block (ISO string plus epoch milliseconds), the ticket URL and the
    ClickUp task fields an automation needs to mirror the ticket.
    """
    now = now or utcnow()
    data = serialize_ticket(ticket)

    data["creator"] = (
        {
            "id": creator.id,
            "name": creator.name,
            "email": creator.email,
            "role": creator.role,
        }
        if creator
        else None
    )

    deadline_ms = to_epoch_ms(ticket.deadline) if ticket.deadline else None
    data["deadline"] = (
        {"iso": ticket.deadline.isoformat() + "Z", "timestamp": deadline_ms}
        if ticket.deadline
        else None
    )
    data["url"] = ticket_url(ticket.id)
    data["clickup"] = {
        "status": CLICKUP_STATUS_MAP.get(ticket.status),
        "priority": CLICKUP_PRIORITY_MAP.get(ticket.priority),
        "due_date": deadline_ms,
        "due_date_time": deadline_ms is not None,
        "time_estimate": CLICKUP_TIME_ESTIMATE_MS,
        "start_date": to_epoch_ms(ticket.created_at or now),
        "start_date_time": True,
        "points": CLICKUP_POINTS,
    }

    if extra:
        data.update(extra)

    return {"event": event, "data": data, "timestamp": now.isoformat() + "Z"}


def extract_response(body) -> WebhookResponse:
    """Pull task/gmail ids, status and priority out of a receiver's JSON body."""
    result = WebhookResponse()
    if not isinstance(body, dict):
        return result

    task = body.get("task") if isinstance(body.get("task"), dict) else {}
    gmail = body.get("gmail") if isinstance(body.get("gmail"), dict) else {}

    task_id = body.get("id") or body.get("taskId") or task.get("id")
    gmail_id = body.get("gmailId") or gmail.get("id") or body.get("messageId")

    result.task_id = str(task_id) if task_id else None
    result.gmail_id = str(gmail_id) if gmail_id else None
    result.status = body.get("status") or None
    result.priority = body.get("priority") or None
    return result


def combine_responses(responses: list[WebhookResponse]) -> Optional[WebhookResponse]:
    """Merge successful responses; later values win. None when nothing succeeded."""
    if not responses:
        return None

    combined = WebhookResponse()
    for response in responses:
        if response.task_id:
            combined.task_id = response.task_id
        if response.gmail_id:
            combined.gmail_id = response.gmail_id
        if response.status:
            combined.status = response.status
        if response.priority:
            combined.priority = response.priority
    return combined


# =============================================================================
# Delivery
# =============================================================================


class WebhookDispatcher:
    """Delivers ticket events to the configured webhooks."""

    def __init__(self, db: Session):
        self.db = db
        self.max_retries = settings.webhook_max_retries
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.webhook_timeout_seconds)
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def active_webhooks(self, event: str) -> list[WebhookConfig]:
        webhooks = (
            self.db.query(WebhookConfig).filter(WebhookConfig.active.is_(True)).all()
        )
        return [w for w in webhooks if event in (w.events or [])]

    async def _post(self, url: str, headers: dict, payload: dict) -> httpx.Response:
        """POST with immediate retries on network errors, timeouts, 429 and 5xx.

        The n-th retry waits n seconds.
        """
        client = await self._get_client()
        request_headers = {**DEFAULT_HEADERS, **(headers or {})}

        for attempt in range(self.max_retries + 1):
            try:
                response = await client.post(url, json=payload, headers=request_headers)
                response.raise_for_status()
                return response
            except httpx.HTTPError as e:
                error_type, error_message = _categorize_error(e)
                if error_type not in RETRYABLE_ERRORS or attempt == self.max_retries:
                    raise

                delay = RETRY_DELAY_SECONDS * (attempt + 1)
                logger.warning(
                    f"Webhook POST to {url} failed ({error_type}): {error_message}. "
                    f"Retry {attempt + 1}/{self.max_retries} in {delay:.0f}s"
                )
                await asyncio.sleep(delay)

    async def _deliver(
        self, webhook: WebhookConfig, event: str, payload: dict
    ) -> DeliveryResult:
        try:
            response = await self._post(webhook.url, webhook.headers, payload)
        except httpx.HTTPError as e:
            _, error_message = _categorize_error(e)
            logger.warning(
                f"Webhook {webhook.id} delivery failed, queued for retry: {error_message}"
            )
            self.enqueue(webhook, event, payload, error_message)
            return DeliveryResult(
                webhook_id=webhook.id,
                url=webhook.url,
                success=False,
                error=error_message,
            )

        logger.info(f"Webhook {event} delivered to {webhook.url}")
        try:
            body = response.json()
        except ValueError:
            body = None
        return DeliveryResult(
            webhook_id=webhook.id,
            url=webhook.url,
            success=True,
            response=extract_response(body),
        )

    def enqueue(
        self, webhook: WebhookConfig, event: str, payload: dict, error: str
    ) -> WebhookQueueItem:
        item = WebhookQueueItem(
            webhook_id=webhook.id,
            url=webhook.url,
            headers=webhook.headers or {},
            event=event,
            payload=payload,
            status="pending",
            attempts=0,
            max_attempts=settings.webhook_queue_max_attempts,
            next_attempt=utcnow(),
            error={"message": error},
        )
        self.db.add(item)
        self.db.commit()
        return item

    async def dispatch(
        self, event: str, ticket: Ticket, extra: Optional[dict] = None
    ) -> Optional[WebhookResponse]:
        """Send an event to all subscribed webhooks in parallel.

        Failures are queued and never raised. Returns the combined response
        of the successful deliveries, or None.
        """
        webhooks = self.active_webhooks(event)
        if not webhooks:
            logger.debug(f"No active webhooks for {event}")
            return None

        creator = self.db.query(User).filter(User.id == ticket.user_id).first()
        payload = build_payload(event, ticket, creator=creator, extra=extra)

        results = await asyncio.gather(
            *(self._deliver(w, event, payload) for w in webhooks)
        )

        successful = [r.response for r in results if r.success and r.response]
        combined = combine_responses(successful)
        if combined and not combined.is_empty():
            logger.info(f"Combined webhook response for {ticket.id}: {combined}")
        return combined

    async def test_webhook(
        self, webhook: WebhookConfig, payload: Optional[dict] = None
    ) -> dict:
        """POST a sample payload to the webhook's test URL (or its URL).

        Raises WebhookDeliveryError with the status and body on non-2xx.
        """
        url = webhook.test_url or webhook.url
        payload = payload or sample_payload()
        client = await self._get_client()

        try:
            response = await client.post(
                url,
                json=payload,
                headers={**DEFAULT_HEADERS, **(webhook.headers or {})},
            )
        except httpx.RequestError as e:
            _, error_message = _categorize_error(e)
            raise WebhookDeliveryError(error_message) from e

        if not response.is_success:
            raise WebhookDeliveryError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            body = response.json()
        except ValueError:
            body = response.text
        return {"url": url, "status_code": response.status_code, "response": body}

    async def process_queue(self, now: Optional[datetime] = None) -> dict:
        """Retry due items from the webhook queue.

        A failing item is rescheduled ``(attempts + 1) * 5`` minutes later and
        marked failed once its final attempt fails.
        """
        now = now or utcnow()
        items = (
            self.db.query(WebhookQueueItem)
            .filter(
                WebhookQueueItem.status == "pending",
                WebhookQueueItem.next_attempt <= now,
                WebhookQueueItem.attempts < WebhookQueueItem.max_attempts,
            )
            .order_by(WebhookQueueItem.next_attempt)
            .limit(settings.webhook_queue_batch_size)
            .all()
        )

        if not items:
            return {"processed": 0, "completed": 0, "failed": 0}

        async def _retry(item: WebhookQueueItem) -> Optional[Exception]:
            try:
                await self._post(item.url, item.headers, item.payload)
                return None
            except httpx.HTTPError as e:
                return e

        outcomes = await asyncio.gather(*(_retry(item) for item in items))

        completed = failed = 0
        for item, error in zip(items, outcomes):
            if error is None:
                item.status = "completed"
                item.completed_at = now
                item.error = None
                completed += 1
                logger.info(f"Queued webhook {item.id} delivered")
                continue

            error_type, error_message = _categorize_error(error)
            status_code = (
                error.response.status_code
                if isinstance(error, httpx.HTTPStatusError)
                else None
            )
            item.error = {
                "message": error_message,
                "code": error_type,
                "status_code": status_code,
            }
            item.next_attempt = now + QUEUE_BACKOFF * (item.attempts + 1)
            if item.attempts + 1 >= item.max_attempts:
                item.status = "failed"
                failed += 1
                logger.error(
                    f"Queued webhook {item.id} to {item.url} failed permanently: "
                    f"{error_message}"
                )
            item.attempts += 1

        self.db.commit()
        logger.info(f"Processed {len(items)} queued webhooks")
        return {"processed": len(items), "completed": completed, "failed": failed}

    def cleanup_queue(self, now: Optional[datetime] = None) -> int:
        """Delete completed/failed queue items past the retention window."""
        now = now or utcnow()
        cutoff = now - timedelta(days=settings.webhook_queue_retention_days)
        items = (
            self.db.query(WebhookQueueItem)
            .filter(
                WebhookQueueItem.status.in_(["completed", "failed"]),
                WebhookQueueItem.created_at <= cutoff,
            )
            .limit(CLEANUP_BATCH_SIZE)
            .all()
        )
        for item in items:
            self.db.delete(item)
        self.db.commit()

        if items:
            logger.info(f"Removed {len(items)} old webhook queue items")
        return len(items)


def sample_payload() -> dict:
    now = utcnow()
    return {
        "event": "ticket.created",
        "data": {
            "id": "test-ticket",
            "title": "Webhook test ticket",
            "description": "Payload sent from the webhook test action",
            "category": "software",
            "priority": "medium",
            "status": "open",
            "url": ticket_url("test-ticket"),
            "created_at": now.isoformat(),
        },
        "timestamp": now.isoformat() + "Z",
    }


# =============================================================================
# Webhook configuration
# =============================================================================


def _validate_events(events: list[str]) -> None:
    unknown = [e for e in events if e not in WEBHOOK_EVENTS]
    if unknown:
        raise ValidationError(f"Unknown webhook events: {', '.join(unknown)}")


def list_webhooks(db: Session, user: User) -> list[WebhookConfig]:
    return (
        db.query(WebhookConfig)
        .filter(WebhookConfig.user_id == user.id)
        .order_by(WebhookConfig.created_at)
        .all()
    )


def get_webhook(db: Session, webhook_id: str, user: User) -> WebhookConfig:
    webhook = (
        db.query(WebhookConfig)
        .filter(WebhookConfig.id == webhook_id, WebhookConfig.user_id == user.id)
        .first()
    )
    if not webhook:
        raise NotFoundError(f"Webhook '{webhook_id}' not found")
    return webhook


def create_webhook(db: Session, user: User, data: dict) -> WebhookConfig:
    _validate_events(data.get("events") or [])
    webhook = WebhookConfig(
        name=data["name"],
        url=data["url"],
        test_url=data.get("test_url"),
        events=list(data.get("events") or []),
        headers=dict(data.get("headers") or {}),
        active=data.get("active", True),
        user_id=user.id,
    )
    db.add(webhook)
    db.commit()
    db.refresh(webhook)
    logger.info(f"Webhook {webhook.id} created for {user.email}")
    return webhook


def update_webhook(
    db: Session, webhook_id: str, user: User, changes: dict
) -> WebhookConfig:
    webhook = get_webhook(db, webhook_id, user)
    if "events" in changes and changes["events"] is not None:
        _validate_events(changes["events"])

    for field in ("name", "url", "test_url", "events", "headers", "active"):
        if field in changes and changes[field] is not None:
            setattr(webhook, field, changes[field])
    db.commit()
    db.refresh(webhook)
    return webhook


def delete_webhook(db: Session, webhook_id: str, user: User) -> None:
    webhook = get_webhook(db, webhook_id, user)
    db.delete(webhook)
    db.commit()


def list_queue(
    db: Session, status: Optional[str] = None, limit: int = 50
) -> list[WebhookQueueItem]:
    query = db.query(WebhookQueueItem)
    if status:
        query = query.filter(WebhookQueueItem.status == status)
    return query.order_by(WebhookQueueItem.created_at.desc()).limit(limit).all()
