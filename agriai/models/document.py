"""Document lifecycle models.

A :class:`Document` is the persisted record that the ingestion queue, the
document processor and the RAG service all share.  It carries three
independent state fields:

* ``status`` -- the editorial lifecycle (DRAFT -> PROCESSING -> PUBLISHED or
  FAILED, optionally ARCHIVED);
* ``extraction_status`` and ``indexing_status`` -- the two ingestion
  sub-stages.

A document may only be PUBLISHED once both sub-stages are COMPLETED.  The
model validator enforces this on every construction, so the store rebuilds
documents through ``model_validate`` rather than ``model_copy`` when applying
updates.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class DocumentStatus(str, Enum):  # noqa: UP042
    """Editorial lifecycle of a document."""

    DRAFT = "DRAFT"
    PROCESSING = "PROCESSING"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"
    FAILED = "FAILED"


class ProcessingStatus(str, Enum):  # noqa: UP042
    """State of one ingestion sub-stage (extraction or indexing)."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class AccessLevel(str, Enum):  # noqa: UP042
    """Tiered visibility of a document."""

    PUBLIC = "PUBLIC"
    MEMBER = "MEMBER"
    ADMIN = "ADMIN"


# Which document tiers each caller role may read.
ROLE_ACCESS: dict[str, tuple[AccessLevel, ...]] = {
    "admin": (AccessLevel.PUBLIC, AccessLevel.MEMBER, AccessLevel.ADMIN),
    "member": (AccessLevel.PUBLIC, AccessLevel.MEMBER),
    "public": (AccessLevel.PUBLIC,),
}


def access_levels_for_role(role: str | None) -> tuple[AccessLevel, ...]:
    """Return the access levels visible to *role*; unknown roles see PUBLIC only."""
    return ROLE_ACCESS.get((role or "public").lower(), ROLE_ACCESS["public"])


class ProcessingLogEntry(BaseModel):
    """One append-only audit entry on a document's processing log."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)
    level: str = Field(default="info", description="info, warning or error.")
    event: str = Field(description="Event name, e.g. 'queued' or 'failed'.")
    message: str = Field(default="")
    metadata: dict[str, Any] = Field(default_factory=dict)


class Document(BaseModel):
    """A registered document and its ingestion state."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique document identifier.")
    title: str
    description: str | None = None
    source_key: str | None = Field(
        default=None, description="Object-storage key of the uploaded file."
    )
    source_url: str | None = Field(default=None, description="External URL to fetch.")
    mime_type: str = Field(default="text/plain")
    category_id: str | None = None
    uploaded_by: str | None = None
    extracted_text: str | None = None
    word_count: int = Field(default=0, ge=0)
    language: str = Field(default="it")
    access_level: AccessLevel = AccessLevel.PUBLIC
    status: DocumentStatus = DocumentStatus.DRAFT
    extraction_status: ProcessingStatus = ProcessingStatus.PENDING
    indexing_status: ProcessingStatus = ProcessingStatus.PENDING
    metadata: dict[str, Any] = Field(default_factory=dict)
    processing_logs: list[ProcessingLogEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    published_at: datetime | None = None
    deleted_at: datetime | None = None

    @model_validator(mode="after")
    def _published_requires_completed_stages(self) -> Document:
        if self.status == DocumentStatus.PUBLISHED and not (
            self.extraction_status == ProcessingStatus.COMPLETED
            and self.indexing_status == ProcessingStatus.COMPLETED
        ):
            raise ValueError(
                "a PUBLISHED document needs extraction and indexing COMPLETED"
            )
        return self

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
