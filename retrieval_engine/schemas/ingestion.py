"""Outcomes of duplicate detection and document registration."""

import enum
import uuid
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from retrieval_engine.schemas.document import DocumentStatus


class DuplicateTier(str, enum.Enum):
    LOCATION = "location"
    FILE_HASH = "file_hash"
    CONTENT_HASH = "content_hash"
    SIMILARITY = "similarity"


class Existing(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["existing"] = "existing"
    document_id: uuid.UUID
    matched_by: DuplicateTier


class New(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["new"] = "new"


class Forced(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["forced"] = "forced"
    new_location: str


DuplicateOutcome = Annotated[Union[Existing, New, Forced], Field(discriminator="kind")]


class ProcessStep(BaseModel):
    """A follow-up call the scheduler must make after add_document."""

    model_config = ConfigDict(frozen=True)

    operation: Literal["process_content"] = "process_content"
    document_id: uuid.UUID


class AddDocumentResult(BaseModel):
    document_id: uuid.UUID
    duplicate: bool
    forced: bool = False
    location: str
    matched_by: Optional[DuplicateTier] = None
    next_steps: list[ProcessStep] = Field(default_factory=list)


class ProcessResult(BaseModel):
    document_id: uuid.UUID
    status: DocumentStatus
    contents: int
    embeddings: int
