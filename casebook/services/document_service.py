"""
Document generation: resolve diagrams, synthesize blocks, pack .docx files,
then upload them next to the case study once its record is swapped in.

Generation runs under ``DOCUMENT_GENERATION_TIMEOUT``; the CPU-bound
synthesis/packing step is pushed to a worker thread.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from datetime import date
from typing import Mapping, Optional, Tuple

from casebook.config import settings
from casebook.core.exceptions import DocumentGenerationError
from casebook.models.schemas import CaseStudy, DocumentMode
from casebook.services.blob_store import BlobStore
from casebook.services.document_synthesizer import synthesize
from casebook.services.docx_renderer import render_docx
from casebook.services.image_embedder import ImageEmbedder, diagram_refs
from casebook.services.repository import document_key, one_pager_key
from casebook.utils.helpers import DOCX_CONTENT_TYPE, utc_now

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class GeneratedDocuments:
    main_document: bytes
    one_pager: bytes


def build_documents(
    case_study: CaseStudy,
    images: Mapping[str, Optional[bytes]],
    generated_on: date,
) -> GeneratedDocuments:
    """Synchronous synthesis + packing of both documents."""
    title = case_study.title
    full = render_docx(
        synthesize(case_study, DocumentMode.FULL, images, generated_on), title, DocumentMode.FULL
    )
    one_pager = render_docx(
        synthesize(case_study, DocumentMode.ONE_PAGER, images, generated_on),
        title,
        DocumentMode.ONE_PAGER,
    )
    return GeneratedDocuments(main_document=full, one_pager=one_pager)


class DocumentService:
    def __init__(
        self,
        blob_store: BlobStore,
        embedder: Optional[ImageEmbedder] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.blob_store = blob_store
        self.embedder = embedder or ImageEmbedder(blob_store)
        self.timeout = timeout if timeout is not None else settings.DOCUMENT_GENERATION_TIMEOUT

    async def _generate(self, case_study: CaseStudy) -> GeneratedDocuments:
        images = await self.embedder.resolve_all(diagram_refs(case_study), case_study.folder_name)
        return await asyncio.to_thread(build_documents, case_study, images, utc_now().date())

    async def generate_documents(self, case_study: CaseStudy) -> GeneratedDocuments:
        """
        Produce the full document and the one-pager for ``case_study``.

        Raises:
            DocumentGenerationError: packing failed or the time budget ran out.
        """
        t0 = time.monotonic()
        try:
            documents = await asyncio.wait_for(self._generate(case_study), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error(
                "Document generation for '%s' exceeded %.0fs", case_study.folder_name, self.timeout
            )
            raise DocumentGenerationError(
                f"Document generation timed out after {self.timeout:.0f}s", timed_out=True
            ) from exc
        except DocumentGenerationError:
            raise
        except Exception as exc:
            logger.error(
                "Document generation for '%s' failed: %s",
                case_study.folder_name,
                exc,
                exc_info=True,
            )
            raise DocumentGenerationError(f"Failed to generate documents: {exc}") from exc

        logger.info(
            "Generated documents for '%s' in %.2fs (%d + %d bytes)",
            case_study.folder_name,
            time.monotonic() - t0,
            len(documents.main_document),
            len(documents.one_pager),
        )
        return documents

    @staticmethod
    def attach_document_keys(case_study: CaseStudy) -> CaseStudy:
        """Return the record pointing at its document blobs."""
        main_key = document_key(case_study.folder_name)
        pager_key = one_pager_key(case_study.folder_name)
        return case_study.model_copy(
            update={
                "document_key": main_key,
                "one_pager_key": pager_key,
                "file_name": main_key.rsplit("/", 1)[-1],
                "one_pager_file_name": pager_key.rsplit("/", 1)[-1],
            }
        )

    async def prepare(self, case_study: CaseStudy) -> Tuple[CaseStudy, GeneratedDocuments]:
        """Generate both documents without storing them."""
        documents = await self.generate_documents(case_study)
        return self.attach_document_keys(case_study), documents

    async def upload_documents(self, case_study: CaseStudy, documents: GeneratedDocuments) -> None:
        """
        Store both files at the keys named on ``case_study``.

        Callers upload only after their compare-and-swap succeeded, so a
        writer that loses the race never replaces the winner's documents.
        """
        await self.blob_store.put(
            case_study.document_key, documents.main_document, content_type=DOCX_CONTENT_TYPE
        )
        await self.blob_store.put(
            case_study.one_pager_key, documents.one_pager, content_type=DOCX_CONTENT_TYPE
        )
        logger.info("Uploaded documents for '%s'", case_study.folder_name)
