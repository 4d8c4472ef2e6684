"""Metadata validation utilities."""

from typing import Any, Mapping, Optional

import pydantic

from retrieval_engine.errors import ValidationError
from retrieval_engine.schemas.document import (
    METADATA_SCHEMAS,
    DocumentType,
    FileMetadata,
)


def validate_metadata(
    document_type: DocumentType, metadata: Optional[Mapping[str, Any]]
) -> dict[str, Any]:
    """
    Validates document metadata against the schema for its document type.

    Args:
        document_type: The type of the document the metadata belongs to.
        metadata: Raw metadata, typically produced by an LLM.

    Returns:
        The metadata with unset keys dropped.

    Raises:
        ValidationError: If a key is not allowed for the type or a value has the
            wrong type.
    """
    schema = METADATA_SCHEMAS[document_type]
    try:
        validated = schema.model_validate(dict(metadata or {}))
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"Invalid metadata for {document_type.value} document: {e}"
        ) from e
    return validated.model_dump(mode="json", exclude_unset=True)


def validate_file_metadata(file_metadata: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    try:
        validated = FileMetadata.model_validate(dict(file_metadata or {}))
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid file metadata: {e}") from e
    return validated.model_dump(mode="json", exclude_none=True)
