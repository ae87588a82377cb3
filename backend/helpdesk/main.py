"""Helpdesk - FastAPI Application.

IT support tickets with outbound webhooks, a ClickUp mirror, collaborative
comment threads, notifications and a personal diary.
"""

import hashlib
import hmac
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import (
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import dashboard as dashboard_metrics
from . import diary, notifications, users, webhooks
from .clickup import ClickUpAPI, ClickUpError, ClickUpEventHandler, ClickUpSync
from .clickup import service as clickup_store
from .collab import RoomFullError, RoomRegistry
from .collab.hub import handle_message
from .config import get_settings
from .deadline_monitor import check_deadlines
from .errors import (
    ConflictError,
    HelpdeskError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .models import SessionLocal, Ticket, User, get_db, init_db, utcnow
from .n8n import parse_ticket_data, verify_n8n_signature
from .priority_messages import (
    get_placeholder_text,
    get_priority_suggestions,
    is_priority_increase,
)
from .schemas import (
    ActiveRequest,
    ApiKeyRequest,
    ApiKeyResponse,
    AssignRequest,
    AttachmentRequest,
    AttachmentResponse,
    ClickUpConfigRequest,
    ClickUpConfigResponse,
    ClickUpConfigUpdateRequest,
    CommentRequest,
    CommentResponse,
    CountResponse,
    DashboardResponse,
    DeadlineExtensionRequest,
    DiaryEntryRequest,
    DiaryEntryResponse,
    DiaryEntryUpdateRequest,
    IssuedKeyResponse,
    NotificationResponse,
    PriorityRequest,
    PrioritySuggestionsResponse,
    ShareRequest,
    StatusRequest,
    TicketCreateRequest,
    TicketResponse,
    TicketUpdateRequest,
    UserCreatedResponse,
    UserCreateRequest,
    UserResponse,
    UserUpdateRequest,
    WebhookCreateRequest,
    WebhookQueueItemResponse,
    WebhookResponseModel,
    WebhookTestRequest,
    WebhookUpdateRequest,
    WriteResultResponse,
)
from .ticket_rules import format_time_remaining, is_overdue, validate_choice
from .tickets import TicketService, comment_dict

# Configure logging
settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Scheduler for periodic tasks
scheduler = AsyncIOScheduler()

# Live collaborative comment threads
rooms = RoomRegistry()


# =============================================================================
# Scheduled Jobs
# =============================================================================


async def process_webhook_queue_job():
    """Retry queued webhook deliveries that are due."""
    db = SessionLocal()
    dispatcher = webhooks.WebhookDispatcher(db)
    try:
        results = await dispatcher.process_queue()
        if results["processed"]:
            logger.info(f"Webhook queue processed: {results}")
    except Exception as e:
        logger.error(f"Webhook queue job failed: {e}")
    finally:
        await dispatcher.close()
        db.close()


async def cleanup_webhook_queue_job():
    """Drop old finished queue items."""
    db = SessionLocal()
    try:
        deleted = webhooks.WebhookDispatcher(db).cleanup_queue()
        logger.info(f"Webhook queue cleanup removed {deleted} items")
    except Exception as e:
        logger.error(f"Webhook queue cleanup failed: {e}")
    finally:
        db.close()


async def deadline_check_job():
    """Send deadline warnings and overdue notices."""
    db = SessionLocal()
    try:
        await check_deadlines(db)
    except Exception as e:
        logger.error(f"Deadline check failed: {e}")
    finally:
        db.close()


# =============================================================================
# App Lifecycle
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting Helpdesk...")
    init_db()

    db = SessionLocal()
    try:
        key = users.ensure_admin_user(db)
        if key is not None:
            # Shown once; only the masked key reaches the log
            print(f"Primary administrator API key: {key.key}")
    finally:
        db.close()

    # Schedule jobs
    scheduler.add_job(
        process_webhook_queue_job,
        "interval",
        minutes=settings.webhook_queue_interval_minutes,
    )
    scheduler.add_job(cleanup_webhook_queue_job, "cron", hour=3, minute=0)
    scheduler.add_job(
        deadline_check_job,
        "interval",
        minutes=settings.deadline_check_interval_minutes,
    )

    scheduler.start()
    logger.info("Scheduler started")

    yield

    # Shutdown
    scheduler.shutdown()
    logger.info("Helpdesk stopped")


app = FastAPI(
    title="Helpdesk",
    description="IT support tickets with webhooks, ClickUp sync and live comments",
    version="0.1.0",
    lifespan=lifespan,
)


# =============================================================================
# Errors and Dependencies
# =============================================================================

ERROR_STATUS = {
    NotFoundError: 404,
    PermissionDeniedError: 403,
    ValidationError: 422,
    ConflictError: 409,
}


@app.exception_handler(HelpdeskError)
async def helpdesk_error_handler(request: Request, exc: HelpdeskError):
    status_code = next(
        (code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 400
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(ClickUpError)
async def clickup_error_handler(request: Request, exc: ClickUpError):
    if exc.kind == "auth_error":
        return JSONResponse(
            status_code=400, content={"detail": "Invalid ClickUp API key"}
        )
    if exc.kind == "not_found":
        return JSONResponse(status_code=404, content={"detail": str(exc)})
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def get_current_user(
    x_api_key: Optional[str] = Header(None), db: Session = Depends(get_db)
) -> User:
    user = users.authenticate(db, x_api_key or "")
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return user


async def get_ticket_service(db: Session = Depends(get_db)):
    service = TicketService(db)
    try:
        yield service
    finally:
        await service.dispatcher.close()


def ticket_response(ticket: Ticket) -> TicketResponse:
    now = utcnow()
    response = TicketResponse.model_validate(ticket)
    response.overdue = is_overdue(ticket, now)
    if ticket.deadline:
        response.time_remaining = format_time_remaining(ticket.deadline, now)
    return response


# =============================================================================
# API Routes
# =============================================================================


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": utcnow().isoformat()}


@app.get("/me", response_model=UserResponse)
async def whoami(user: User = Depends(get_current_user)):
    return user


# =============================================================================
# Ticket Routes
# =============================================================================


@app.get("/tickets", response_model=list[TicketResponse])
async def get_tickets(
    search: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    category: Optional[str] = None,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    """Tickets visible to the caller, newest first."""
    tickets = service.list_tickets(
        user, search=search, status=status, priority=priority, category=category
    )
    return [ticket_response(t) for t in tickets]


@app.post("/tickets", response_model=TicketResponse, status_code=201)
async def create_ticket(
    request: TicketCreateRequest,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = await service.create_ticket(request.model_dump(), user)
    return ticket_response(ticket)


@app.get("/tickets/priority-suggestions", response_model=PrioritySuggestionsResponse)
async def priority_suggestions(
    current: str, new: str, user: User = Depends(get_current_user)
):
    """Reason suggestions shown when changing a ticket's priority."""
    validate_choice("priority", current)
    validate_choice("priority", new)
    return PrioritySuggestionsResponse(
        increase=is_priority_increase(current, new),
        placeholder=get_placeholder_text(current, new),
        suggestions=get_priority_suggestions(current, new),
    )


@app.get("/tickets/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: str,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    return ticket_response(service.get_visible_ticket(ticket_id, user))


@app.patch("/tickets/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: str,
    request: TicketUpdateRequest,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    changes = request.model_dump(exclude_none=True)
    ticket = await service.update_ticket(ticket_id, changes, user)
    return ticket_response(ticket)


@app.delete("/tickets/{ticket_id}", status_code=204)
async def delete_ticket(
    ticket_id: str,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    await service.delete_ticket(ticket_id, user)
    await rooms.close_room(ticket_id)


@app.post("/tickets/{ticket_id}/status", response_model=TicketResponse)
async def set_ticket_status(
    ticket_id: str,
    request: StatusRequest,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = await service.update_status(ticket_id, request.status, user)
    return ticket_response(ticket)


@app.post("/tickets/{ticket_id}/priority", response_model=TicketResponse)
async def set_ticket_priority(
    ticket_id: str,
    request: PriorityRequest,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = await service.update_priority(
        ticket_id, request.priority, user, reason=request.reason
    )
    return ticket_response(ticket)


@app.post("/tickets/{ticket_id}/assign", response_model=TicketResponse)
async def assign_ticket(
    ticket_id: str,
    request: AssignRequest,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = await service.assign(ticket_id, request.assigned_to_id, user)
    return ticket_response(ticket)


@app.post("/tickets/{ticket_id}/deadline", response_model=TicketResponse)
async def extend_ticket_deadline(
    ticket_id: str,
    request: DeadlineExtensionRequest,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = await service.extend_deadline(
        ticket_id, request.deadline, request.reason, user
    )
    return ticket_response(ticket)


@app.post(
    "/tickets/{ticket_id}/comments", response_model=CommentResponse, status_code=201
)
async def add_comment(
    ticket_id: str,
    request: CommentRequest,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    comment = await service.add_comment(ticket_id, request.content, user)
    await rooms.publish_comment(service.db, ticket_id, comment_dict(comment))
    return comment


@app.delete("/tickets/{ticket_id}/comments/{comment_id}", status_code=204)
async def delete_comment(
    ticket_id: str,
    comment_id: str,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    await service.delete_comment(ticket_id, comment_id, user)
    await rooms.retract_comment(service.db, ticket_id, comment_id)


@app.post(
    "/tickets/{ticket_id}/attachments",
    response_model=AttachmentResponse,
    status_code=201,
)
async def add_attachment(
    ticket_id: str,
    request: AttachmentRequest,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    return service.add_attachment(ticket_id, request.model_dump(), user)


@app.delete("/tickets/{ticket_id}/attachments/{attachment_id}", status_code=204)
async def remove_attachment(
    ticket_id: str,
    attachment_id: str,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    service.remove_attachment(ticket_id, attachment_id, user)


# =============================================================================
# Collaborative Comment Thread
# =============================================================================


@app.websocket("/tickets/{ticket_id}/thread")
async def comment_thread(
    websocket: WebSocket,
    ticket_id: str,
    api_key: str = Query(""),
    db: Session = Depends(get_db),
):
    """Relay for a ticket's collaborative comment thread."""
    user = users.authenticate(db, api_key)
    if user is None:
        await websocket.close(code=1008)
        return

    service = TicketService(db)
    try:
        ticket = service.get_visible_ticket(ticket_id, user)
    except HelpdeskError:
        await websocket.close(code=1008)
        return

    room = rooms.open(db, ticket)
    await websocket.accept()
    try:
        peer = room.join(websocket, user)
    except RoomFullError as e:
        await websocket.send_json({"type": "error", "message": str(e)})
        await websocket.close(code=1013)
        rooms.release(room)
        return

    try:
        await room.welcome(peer)
        await room.broadcast_presence()
        while not room.closed:
            message = await websocket.receive_json()
            await handle_message(room, peer, message, service, user)
    except WebSocketDisconnect:
        pass
    except json.JSONDecodeError:
        await websocket.close(code=1003)
    finally:
        room.leave(peer)
        rooms.release(room)
        await room.broadcast_presence()
        await service.dispatcher.close()


# =============================================================================
# Notification Routes
# =============================================================================


@app.get("/notifications", response_model=list[NotificationResponse])
async def get_notifications(
    unread_only: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return notifications.list_notifications(db, user, unread_only=unread_only)


@app.post("/notifications/read-all", response_model=CountResponse)
async def read_all_notifications(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return CountResponse(count=notifications.mark_all_as_read(db, user))


@app.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def read_notification(
    notification_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return notifications.mark_as_read(db, notification_id, user)


@app.delete("/notifications/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notifications.delete_notification(db, notification_id, user)


@app.delete("/notifications", response_model=CountResponse)
async def clear_notifications(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return CountResponse(count=notifications.clear_all(db, user))


# =============================================================================
# Outbound Webhook Routes
# =============================================================================


@app.get("/webhooks", response_model=list[WebhookResponseModel])
async def get_webhooks(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return webhooks.list_webhooks(db, user)


@app.post("/webhooks", response_model=WebhookResponseModel, status_code=201)
async def create_webhook(
    request: WebhookCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return webhooks.create_webhook(db, user, request.model_dump())


@app.get("/webhooks/queue", response_model=list[WebhookQueueItemResponse])
async def get_webhook_queue(
    status: Optional[str] = None,
    limit: int = 50,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return webhooks.list_queue(db, status=status, limit=limit)


@app.post("/webhooks/queue/process")
async def process_webhook_queue(
    user: User = Depends(require_admin), db: Session = Depends(get_db)
):
    """Run the retry queue now instead of waiting for the scheduler."""
    dispatcher = webhooks.WebhookDispatcher(db)
    try:
        return await dispatcher.process_queue()
    finally:
        await dispatcher.close()


@app.get("/webhooks/{webhook_id}", response_model=WebhookResponseModel)
async def get_webhook(
    webhook_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return webhooks.get_webhook(db, webhook_id, user)


@app.patch("/webhooks/{webhook_id}", response_model=WebhookResponseModel)
async def update_webhook(
    webhook_id: str,
    request: WebhookUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return webhooks.update_webhook(
        db, webhook_id, user, request.model_dump(exclude_unset=True)
    )


@app.delete("/webhooks/{webhook_id}", status_code=204)
async def delete_webhook(
    webhook_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    webhooks.delete_webhook(db, webhook_id, user)


@app.post("/webhooks/{webhook_id}/test")
async def test_webhook(
    webhook_id: str,
    request: Optional[WebhookTestRequest] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Send a sample payload to the webhook's test URL."""
    webhook = webhooks.get_webhook(db, webhook_id, user)
    dispatcher = webhooks.WebhookDispatcher(db)
    try:
        return await dispatcher.test_webhook(
            webhook, request.payload if request else None
        )
    except webhooks.WebhookDeliveryError as e:
        raise HTTPException(status_code=502, detail=str(e))
    finally:
        await dispatcher.close()


# =============================================================================
# ClickUp Routes
# =============================================================================


def _clickup_api(db: Session, user: User) -> ClickUpAPI:
    config = clickup_store.get_config(db, user)
    api_key = config.api_key if config else settings.clickup_api_token
    if not api_key:
        raise HTTPException(status_code=400, detail="ClickUp is not configured")
    return ClickUpAPI(api_key)


@app.get("/clickup/config", response_model=ClickUpConfigResponse)
async def get_clickup_config(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    config = clickup_store.get_config(db, user)
    if config is None:
        raise HTTPException(status_code=404, detail="ClickUp is not configured")
    return config


@app.put("/clickup/config", response_model=ClickUpConfigResponse)
async def save_clickup_config(
    request: ClickUpConfigRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Store the caller's ClickUp connection after checking the key works."""
    api = ClickUpAPI(request.api_key)
    try:
        valid = await api.validate_api_key()
    finally:
        await api.close()
    if not valid:
        raise HTTPException(status_code=400, detail="Invalid ClickUp API key")
    return clickup_store.save_config(db, user, request.model_dump())


@app.patch("/clickup/config", response_model=ClickUpConfigResponse)
async def update_clickup_config(
    request: ClickUpConfigUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return clickup_store.update_config(db, user, request.model_dump(exclude_none=True))


@app.delete("/clickup/config", status_code=204)
async def delete_clickup_config(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    clickup_store.delete_config(db, user)


@app.get("/clickup/status")
async def clickup_status(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return {"configured": await ClickUpSync(db).is_configured()}


@app.get("/clickup/workspaces")
async def clickup_workspaces(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    api = _clickup_api(db, user)
    try:
        return await api.get_workspaces()
    finally:
        await api.close()


@app.get("/clickup/workspaces/{workspace_id}/spaces")
async def clickup_spaces(
    workspace_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    api = _clickup_api(db, user)
    try:
        return await api.get_spaces(workspace_id)
    finally:
        await api.close()


@app.get("/clickup/workspaces/{workspace_id}/users")
async def clickup_users(
    workspace_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    api = _clickup_api(db, user)
    try:
        return await api.get_users(workspace_id)
    finally:
        await api.close()


@app.get("/clickup/spaces/{space_id}/lists")
async def clickup_lists(
    space_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    api = _clickup_api(db, user)
    try:
        return await api.get_lists(space_id)
    finally:
        await api.close()


@app.post("/tickets/{ticket_id}/clickup", response_model=WriteResultResponse)
async def mirror_ticket_to_clickup(
    ticket_id: str,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    """Create the ClickUp task for a ticket."""
    ticket = service.get_visible_ticket(ticket_id, user)
    result = await ClickUpSync(service.db).create_task_from_ticket(ticket)
    return WriteResultResponse(**vars(result))


@app.post("/tickets/{ticket_id}/clickup/status", response_model=WriteResultResponse)
async def push_status_to_clickup(
    ticket_id: str,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = service.get_visible_ticket(ticket_id, user)
    result = await ClickUpSync(service.db).update_task_status(ticket)
    return WriteResultResponse(**vars(result))


@app.post(
    "/tickets/{ticket_id}/clickup/comments/{comment_id}",
    response_model=WriteResultResponse,
)
async def push_comment_to_clickup(
    ticket_id: str,
    comment_id: str,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = service.get_visible_ticket(ticket_id, user)
    comment = next((c for c in ticket.comments if c.id == comment_id), None)
    if comment is None:
        raise HTTPException(status_code=404, detail=f"Comment '{comment_id}' not found")
    result = await ClickUpSync(service.db).add_comment(ticket, comment)
    return WriteResultResponse(**vars(result))


@app.delete("/tickets/{ticket_id}/clickup", response_model=WriteResultResponse)
async def delete_clickup_task(
    ticket_id: str,
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = service.get_visible_ticket(ticket_id, user)
    result = await ClickUpSync(service.db).delete_task(ticket)
    if result.success and ticket.task_id:
        ticket.task_id = None
        service.db.commit()
    return WriteResultResponse(**vars(result))


# =============================================================================
# Webhook Receivers
# =============================================================================


def verify_clickup_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Verify ClickUp webhook signature."""
    if not secret:
        return True  # Skip verification if no secret configured
    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


@app.post("/webhooks/clickup")
async def clickup_webhook(
    request: Request, service: TicketService = Depends(get_ticket_service)
):
    """Handle ClickUp webhook events for mirrored tickets."""
    body = await request.body()

    signature = request.headers.get("X-Signature", "")
    if not verify_clickup_signature(body, signature, settings.clickup_webhook_secret):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON")

    result = await ClickUpEventHandler(service).handle(payload)
    if result.get("event") == "taskDeleted":
        await rooms.close_room(result.get("ticket_id"))
    elif result.get("comment"):
        await rooms.publish_comment(service.db, result["ticket_id"], result["comment"])
    return result


@app.post("/webhooks/n8n/tickets", response_model=TicketResponse, status_code=201)
async def n8n_create_ticket(
    request: Request, service: TicketService = Depends(get_ticket_service)
):
    """Create a ticket from an n8n workflow."""
    body = await request.body()

    signature = request.headers.get("X-N8N-Signature")
    if not verify_n8n_signature(body, signature, settings.n8n_webhook_secret):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON")

    ticket = await service.create_ticket(parse_ticket_data(payload), None)
    return ticket_response(ticket)


# =============================================================================
# User Routes
# =============================================================================


@app.get("/users", response_model=list[UserResponse])
async def get_users(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return users.list_users(db, user)


@app.post("/users", response_model=UserCreatedResponse, status_code=201)
async def create_user(
    request: UserCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a user and return their first API key (shown only once)."""
    created, key = users.create_user(db, user, request.model_dump())
    return UserCreatedResponse(
        user=UserResponse.model_validate(created), api_key=key.key
    )


@app.patch("/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    request: UserUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return users.update_user(db, user, user_id, request.model_dump(exclude_none=True))


@app.post("/users/{user_id}/active", response_model=UserResponse)
async def set_user_active(
    user_id: str,
    request: ActiveRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return users.set_active(db, user, user_id, request.active)


@app.delete("/users/{user_id}", status_code=204)
async def delete_user(
    user_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    users.delete_user(db, user, user_id)


@app.get("/users/{user_id}/keys", response_model=list[ApiKeyResponse])
async def get_user_keys(
    user_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return users.list_keys(db, user, user_id)


@app.post("/users/{user_id}/keys", response_model=IssuedKeyResponse, status_code=201)
async def issue_user_key(
    user_id: str,
    request: ApiKeyRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return users.create_key_for_user(db, user, user_id, name=request.name)


@app.delete("/keys/{key_id}", response_model=ApiKeyResponse)
async def revoke_key(
    key_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return users.revoke_key(db, user, key_id)


# =============================================================================
# Diary Routes
# =============================================================================


@app.get("/diary", response_model=list[DiaryEntryResponse])
async def get_diary_entries(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return diary.list_entries(db, user)


@app.post("/diary", response_model=DiaryEntryResponse, status_code=201)
async def create_diary_entry(
    request: DiaryEntryRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return diary.create_entry(db, user, request.model_dump())


@app.get("/diary/{entry_id}", response_model=DiaryEntryResponse)
async def get_diary_entry(
    entry_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return diary.get_entry(db, entry_id, user)


@app.patch("/diary/{entry_id}", response_model=DiaryEntryResponse)
async def update_diary_entry(
    entry_id: str,
    request: DiaryEntryUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return diary.update_entry(
        db, entry_id, user, request.model_dump(exclude_none=True)
    )


@app.delete("/diary/{entry_id}", status_code=204)
async def delete_diary_entry(
    entry_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    diary.delete_entry(db, entry_id, user)


@app.post("/diary/{entry_id}/share", response_model=DiaryEntryResponse)
async def share_diary_entry(
    entry_id: str,
    request: ShareRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return diary.share_entry(db, entry_id, user, request.user_ids)


# =============================================================================
# Dashboard
# =============================================================================


@app.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    """Ticket metrics over the tickets visible to the caller."""
    return dashboard_metrics.compute_metrics(service.list_tickets(user))
