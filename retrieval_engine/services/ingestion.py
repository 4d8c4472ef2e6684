"""
Content processing: chunk every content item of a document, embed the chunks
and replace the stored embeddings. Called by the external scheduler for each
`process_content` step returned from add_document.
"""

import uuid
from typing import Optional, Sequence

from retrieval_engine.errors import NotFoundError, ProcessError, StoreError
from retrieval_engine.schemas.chunk import Chunk, ChunkVector
from retrieval_engine.schemas.content import ContentItem
from retrieval_engine.schemas.document import DocumentStatus
from retrieval_engine.schemas.ingestion import ProcessResult
from retrieval_engine.services.cache import EmbeddingCache
from retrieval_engine.services.embedding_store import EmbeddingStore
from retrieval_engine.services.embeddings import EmbeddingProvider
from retrieval_engine.services.segmenter import ContentSegmenter
from retrieval_engine.store.base import StorageBackend
from retrieval_engine.utils.logging_config import logger


class ContentProcessor:
    def __init__(
        self,
        backend: StorageBackend,
        store: EmbeddingStore,
        provider: EmbeddingProvider,
        segmenter: ContentSegmenter,
        cache: Optional[EmbeddingCache] = None,
    ):
        self.backend = backend
        self.store = store
        self.provider = provider
        self.segmenter = segmenter
        self.cache = cache

    def _handle_processing_failure(self, document_id: uuid.UUID, error: Exception) -> None:
        logger.exception(f"Processing failed for document_id: {document_id}. Error: {error}")
        try:
            self.backend.set_document_status(document_id, DocumentStatus.ERROR)
        except (StoreError, NotFoundError) as e:
            logger.error(f"Could not mark document {document_id} as failed: {e}")

    def embed_chunks(self, chunks: Sequence[Chunk], model: str) -> list[list[float]]:
        """Vectors for `chunks`, served from the cache where possible."""
        vectors: list[Optional[list[float]]] = [None] * len(chunks)
        if self.cache is not None:
            for i, chunk in enumerate(chunks):
                vectors[i] = self.cache.get(model, chunk.cache_key(model))
        missing = [i for i, vector in enumerate(vectors) if vector is None]
        if missing:
            fresh = self.provider.embed_batch([chunks[i].content for i in missing], model)
            for i, vector in zip(missing, fresh):
                vectors[i] = vector
                if self.cache is not None:
                    self.cache.set(model, chunks[i].cache_key(model), vector)
        logger.debug(f"Embedded {len(chunks)} chunks, {len(chunks) - len(missing)} from cache")
        return vectors

    def _process_item(self, item: ContentItem) -> int:
        # Held across generation and upsert.
        with self.store.claim(item.kind, item.id):
            chunks = list(
                self.segmenter.chunk(item.payload_text(), item.chunk_size, item.chunk_overlap)
            )
            vectors = self.embed_chunks(chunks, item.embedding_model)
            ids = self.store.upsert(
                item.kind,
                item.id,
                [
                    ChunkVector(
                        content=chunk.content,
                        vector=vector,
                        char_start=chunk.char_start,
                        char_end=chunk.char_end,
                    )
                    for chunk, vector in zip(chunks, vectors)
                ],
                embedding_model=item.embedding_model,
            )
        return len(ids)

    def process_content(self, document_id: uuid.UUID) -> ProcessResult:
        """
        Generate and store embeddings for every content item of a document.

        The document moves pending -> processing -> processed, or to error when
        any step fails.

        Raises:
            NotFoundError: If the document does not exist.
            ProcessError: Wrapping the failure; `retryable` tells the scheduler
                whether another attempt may succeed.
        """
        document = self.backend.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")

        logger.info(f"Starting processing for document_id: {document_id}")
        try:
            self.backend.set_document_status(document_id, DocumentStatus.PROCESSING)
            items = self.backend.list_contents(document_id)
            embeddings = sum(self._process_item(item) for item in items)
            self.backend.set_document_status(document_id, DocumentStatus.PROCESSED)
        except Exception as e:
            self._handle_processing_failure(document_id, e)
            raise ProcessError(document_id, e) from e
        logger.info(f"Successfully processed document_id: {document_id}")
        return ProcessResult(
            document_id=document_id,
            status=DocumentStatus.PROCESSED,
            contents=len(items),
            embeddings=embeddings,
        )
