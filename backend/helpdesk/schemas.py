"""Request and response models for the HTTP API."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, field_validator


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# =============================================================================
# Tickets
# =============================================================================


class CommentResponse(BaseModel):
    id: str
    user_id: str
    user_name: Optional[str]
    content: str
    created_at: datetime

    class Config:
        from_attributes = True


class AttachmentResponse(BaseModel):
    id: str
    file_name: str
    file_url: str
    file_type: str
    created_at: datetime

    class Config:
        from_attributes = True


class DeadlineHistoryResponse(BaseModel):
    old_deadline: Optional[datetime]
    new_deadline: datetime
    reason: str
    extended_by: str
    extended_at: datetime

    class Config:
        from_attributes = True


class TicketResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    priority: str
    status: str
    deadline: Optional[datetime]
    user_id: str
    assigned_to_id: Optional[str]
    assigned_to_name: Optional[str]
    task_id: Optional[str]
    gmail_id: Optional[str]
    priority_locked_by: Optional[str]
    priority_locked_at: Optional[datetime]
    priority_reason: Optional[str]
    created_at: datetime
    updated_at: datetime
    time_remaining: Optional[str] = None
    overdue: bool = False
    comments: list[CommentResponse] = []
    attachments: list[AttachmentResponse] = []
    deadline_history: list[DeadlineHistoryResponse] = []

    class Config:
        from_attributes = True


class TicketCreateRequest(BaseModel):
    title: str
    description: str
    category: str
    priority: str
    status: Optional[str] = None
    deadline: Optional[datetime] = None
    assigned_to_id: Optional[str] = None

    @field_validator("deadline")
    @classmethod
    def deadline_to_utc(cls, value):
        return _naive_utc(value)


class TicketUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    priority_reason: Optional[str] = None
    status: Optional[str] = None

    class Config:
        # Deadlines change only through POST /tickets/{id}/deadline
        extra = "forbid"


class StatusRequest(BaseModel):
    status: str


class PriorityRequest(BaseModel):
    priority: str
    reason: Optional[str] = None


class AssignRequest(BaseModel):
    assigned_to_id: Optional[str] = None


class DeadlineExtensionRequest(BaseModel):
    deadline: datetime
    reason: str

    @field_validator("deadline")
    @classmethod
    def deadline_to_utc(cls, value):
        return _naive_utc(value)


class PrioritySuggestionsResponse(BaseModel):
    increase: bool
    placeholder: str
    suggestions: list[str]


class CommentRequest(BaseModel):
    content: str


class AttachmentRequest(BaseModel):
    file_name: str
    file_url: str
    file_type: Optional[str] = None


# =============================================================================
# Notifications
# =============================================================================


class NotificationResponse(BaseModel):
    id: str
    ticket_id: Optional[str]
    message: str
    read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class CountResponse(BaseModel):
    count: int


# =============================================================================
# Webhooks
# =============================================================================


class WebhookResponseModel(BaseModel):
    id: str
    name: str
    url: str
    test_url: Optional[str]
    events: list[str]
    headers: dict[str, str]
    active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class WebhookCreateRequest(BaseModel):
    name: str
    url: str
    test_url: Optional[str] = None
    events: list[str] = []
    headers: dict[str, str] = {}
    active: bool = True


class WebhookUpdateRequest(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    test_url: Optional[str] = None
    events: Optional[list[str]] = None
    headers: Optional[dict[str, str]] = None
    active: Optional[bool] = None


class WebhookTestRequest(BaseModel):
    payload: Optional[dict] = None


class WebhookQueueItemResponse(BaseModel):
    id: int
    webhook_id: Optional[str]
    url: str
    event: str
    status: str
    attempts: int
    max_attempts: int
    error: Optional[dict]
    next_attempt: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# ClickUp
# =============================================================================


class ClickUpConfigRequest(BaseModel):
    api_key: str
    list_id: str
    workspace_id: Optional[str] = None
    space_id: Optional[str] = None
    active: bool = True


class ClickUpConfigUpdateRequest(BaseModel):
    api_key: Optional[str] = None
    list_id: Optional[str] = None
    workspace_id: Optional[str] = None
    space_id: Optional[str] = None
    active: Optional[bool] = None


class ClickUpConfigResponse(BaseModel):
    id: str
    workspace_id: Optional[str]
    space_id: Optional[str]
    list_id: str
    active: bool
    updated_at: datetime

    class Config:
        from_attributes = True


class WriteResultResponse(BaseModel):
    success: bool
    message: str
    source_id: Optional[str] = None
    conflict: bool = False
    current_state: Optional[str] = None


# =============================================================================
# Users
# =============================================================================


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    role: str
    active: bool
    last_login: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class UserCreateRequest(BaseModel):
    email: str
    name: str
    role: str = "user"


class UserUpdateRequest(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None


class ActiveRequest(BaseModel):
    active: bool


class ApiKeyResponse(BaseModel):
    id: str
    name: str
    user_id: str
    active: bool
    last_used_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class IssuedKeyResponse(ApiKeyResponse):
    key: str


class UserCreatedResponse(BaseModel):
    user: UserResponse
    api_key: str


class ApiKeyRequest(BaseModel):
    name: str = "default"


# =============================================================================
# Diary
# =============================================================================


class DiaryEntryResponse(BaseModel):
    id: str
    title: str
    content: str
    user_id: str
    shared_with: list[str]
    tags: list[str]
    is_public: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DiaryEntryRequest(BaseModel):
    title: str
    content: str = ""
    tags: list[str] = []
    is_public: bool = False


class DiaryEntryUpdateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[list[str]] = None
    is_public: Optional[bool] = None


class ShareRequest(BaseModel):
    user_ids: list[str]


# =============================================================================
# Dashboard
# =============================================================================


class StatusCount(BaseModel):
    status: str
    name: str
    value: int


class CategoryCount(BaseModel):
    category: str
    name: str
    count: int


class DashboardResponse(BaseModel):
    total_tickets: int
    open_tickets: int
    resolved_tickets: int
    avg_resolution_time: float
    ticket_variation: float
    overdue_tickets: int
    status_data: list[StatusCount]
    category_data: list[CategoryCount]
