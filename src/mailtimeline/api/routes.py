"""
API routes for the mail timeline service.

Every handler that touches the pipeline is a plain ``def`` so FastAPI runs
it on its threadpool; sync and extraction are blocking.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger
from pydantic import BaseModel, Field

from mailtimeline.application.service import MailTimelineService
from mailtimeline.application.use_cases.sync_account import SyncOptions
from mailtimeline.domain.entities.records import MessageRecord
from mailtimeline.domain.entities.timeline import ThreadEntry, TimelineEvent, TimelinePage
from mailtimeline.domain.errors import NotFoundError
from mailtimeline.infrastructure.settings import get_settings

router = APIRouter()


def get_service(request: Request) -> MailTimelineService:
    return request.app.state.container.service


# ============================================================================
# Request/Response Models
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str


class SyncRequest(BaseModel):
    """Request body for an account sync."""

    resync: bool = Field(False, description="Refetch from the start and recompute threads and associations")
    max_pages: int | None = Field(None, ge=1, description="Stop after this many provider pages")


class SyncErrorModel(BaseModel):
    external_id: str
    error_code: str
    message: str


class SyncResponse(BaseModel):
    """Summary of one sync unit."""

    account_id: str
    processed: int
    created: int
    updated: int
    skipped: int
    aborted: bool
    errors: list[SyncErrorModel] = Field(default_factory=list)


class TimelineEventModel(BaseModel):
    event_id: str
    kind: str
    occurred_at: datetime
    business_id: str | None
    contact_id: str | None = None
    title: str
    summary: str
    thread_id: str | None
    thread_count: int
    is_representative: bool
    metadata: dict[str, Any] = Field(default_factory=dict)


class TimelineResponse(BaseModel):
    """One page of a business timeline."""

    events: list[TimelineEventModel]
    page: int
    page_size: int
    total: int
    has_more: bool


class AttachmentModel(BaseModel):
    filename: str
    content_type: str
    size_bytes: int
    storage_ref: str | None
    is_stub: bool


class ThreadMessageModel(BaseModel):
    message_id: str
    subject: str
    from_address: str
    sent_at: datetime
    direction: str
    reply_style: str
    new_text: str
    new_markup: str | None
    quoted_text: str
    signature: str
    disclaimer: str
    attachments: list[AttachmentModel] = Field(default_factory=list)


class ThreadResponse(BaseModel):
    """An expanded thread, oldest message first."""

    thread_id: str
    body: str
    messages: list[ThreadMessageModel]


class AssociationRequest(BaseModel):
    business_id: str = Field(..., description="Business the message belongs to")
    contact_id: str | None = Field(None, description="Contact within the business (optional)")


class StatusRequest(BaseModel):
    """Only the flags that are set are changed."""

    read: bool | None = None
    starred: bool | None = None
    deleted: bool | None = None


class MessageResponse(BaseModel):
    message_id: str
    thread_id: str
    business_id: str | None
    contact_id: str | None
    association_confidence: str
    manual: bool
    is_read: bool
    is_starred: bool
    is_deleted: bool


# ============================================================================
# Mapping helpers
# ============================================================================


def _event_model(event: TimelineEvent) -> TimelineEventModel:
    return TimelineEventModel(
        event_id=event.event_id,
        kind=event.kind.value,
        occurred_at=event.occurred_at,
        business_id=event.business_id,
        contact_id=event.contact_id,
        title=event.title,
        summary=event.summary,
        thread_id=event.thread_id,
        thread_count=event.thread_count,
        is_representative=event.is_representative,
        metadata=dict(event.metadata),
    )


def _timeline_response(result: TimelinePage) -> TimelineResponse:
    return TimelineResponse(
        events=[_event_model(e) for e in result.events],
        page=result.page,
        page_size=result.page_size,
        total=result.total,
        has_more=result.has_more,
    )


def _thread_message_model(entry: ThreadEntry) -> ThreadMessageModel:
    msg, content = entry.record.message, entry.content
    return ThreadMessageModel(
        message_id=entry.record.id,
        subject=msg.subject,
        from_address=str(msg.from_address) if msg.from_address else "",
        sent_at=msg.sent_at,
        direction=msg.direction.value,
        reply_style=content.reply_style.value,
        new_text=content.new_text,
        new_markup=content.new_markup,
        quoted_text=content.quoted_text,
        signature=content.signature,
        disclaimer=content.disclaimer,
        attachments=[
            AttachmentModel(
                filename=a.filename,
                content_type=a.content_type,
                size_bytes=a.size_bytes,
                storage_ref=a.storage_ref,
                is_stub=a.is_stub,
            )
            for a in msg.attachments
        ],
    )


def _message_model(record: MessageRecord) -> MessageResponse:
    return MessageResponse(
        message_id=record.id,
        thread_id=record.thread_id,
        business_id=record.association.business_id,
        contact_id=record.association.contact_id,
        association_confidence=record.association.confidence.value,
        manual=record.association.manual,
        is_read=record.is_read,
        is_starred=record.is_starred,
        is_deleted=record.is_deleted,
    )


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check() -> HealthResponse:
    """Basic health check endpoint."""
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.app_version,
    )


# ============================================================================
# Sync
# ============================================================================


@router.post("/accounts/{account_id}/sync", response_model=SyncResponse, tags=["sync"])
def sync_account(
    account_id: str,
    request: Optional[SyncRequest] = None,
    service: MailTimelineService = Depends(get_service),
) -> SyncResponse:
    """Run one sync unit for the account and return its summary."""
    request = request or SyncRequest()
    try:
        result = service.sync_account(account_id, SyncOptions(resync=request.resync, max_pages=request.max_pages))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except Exception as e:
        logger.exception(f"Sync failed for {account_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    return SyncResponse(
        account_id=result.account_id,
        processed=result.processed,
        created=result.created,
        updated=result.updated,
        skipped=result.skipped,
        aborted=result.aborted,
        errors=[SyncErrorModel(external_id=e.external_id, error_code=e.error_code, message=e.message) for e in result.errors],
    )


# ============================================================================
# Timeline
# ============================================================================


@router.get("/businesses/{business_id}/timeline", response_model=TimelineResponse, tags=["timeline"])
def get_timeline(
    business_id: str,
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1),
    groups: list[str] | None = Query(None, description="email, activity, ticket, offer, messaging, other"),
    collapse_threads: bool = Query(True),
    service: MailTimelineService = Depends(get_service),
) -> TimelineResponse:
    """Business timeline, newest first."""
    try:
        result = service.get_timeline(business_id, page, page_size, groups or (), collapse_threads)
    except ValueError as e:
        logger.warning(f"Rejected timeline filter for {business_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Timeline failed for {business_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    return _timeline_response(result)


@router.get("/contacts/{contact_id}/timeline", response_model=TimelineResponse, tags=["timeline"])
def get_contact_timeline(
    contact_id: str,
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1),
    groups: list[str] | None = Query(None, description="email, activity, ticket, offer, messaging, other"),
    collapse_threads: bool = Query(True),
    service: MailTimelineService = Depends(get_service),
) -> TimelineResponse:
    """One contact's part of their business timeline, newest first."""
    try:
        result = service.get_contact_timeline(contact_id, page, page_size, groups or (), collapse_threads)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValueError as e:
        logger.warning(f"Rejected timeline filter for contact {contact_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Contact timeline failed for {contact_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    return _timeline_response(result)


@router.get("/threads/{thread_id}", response_model=ThreadResponse, tags=["timeline"])
def get_thread(
    thread_id: str,
    include_quoted: bool = Query(False),
    include_signatures: bool = Query(False),
    service: MailTimelineService = Depends(get_service),
) -> ThreadResponse:
    """Expand a thread into its messages and a reconstructed conversation body."""
    try:
        view = service.get_thread(thread_id, include_quoted, include_signatures)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except Exception as e:
        logger.exception(f"Thread expansion failed for {thread_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    return ThreadResponse(
        thread_id=view.thread_id,
        body=view.body,
        messages=[_thread_message_model(e) for e in view.entries],
    )


# ============================================================================
# Message commands
# ============================================================================


@router.post("/messages/{message_id}/association", response_model=MessageResponse, tags=["messages"])
def manually_associate(
    message_id: str,
    request: AssociationRequest,
    service: MailTimelineService = Depends(get_service),
) -> MessageResponse:
    """Pin a message to a business (and optionally a contact)."""
    try:
        record = service.manually_associate(message_id, request.business_id, request.contact_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except Exception as e:
        logger.exception(f"Manual association failed for {message_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")
    return _message_model(record)


@router.patch("/messages/{message_id}/status", response_model=MessageResponse, tags=["messages"])
def set_message_status(
    message_id: str,
    request: StatusRequest,
    service: MailTimelineService = Depends(get_service),
) -> MessageResponse:
    try:
        record = service.set_message_status(message_id, read=request.read, starred=request.starred, deleted=request.deleted)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except Exception as e:
        logger.exception(f"Status update failed for {message_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")
    return _message_model(record)
