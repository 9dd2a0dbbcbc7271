"""
Document endpoints.

Documents are metadata only (locator + content hash); the files themselves
live in external storage.
"""

from fastapi import APIRouter, status

from dts.api.dependencies import CurrentActor, Engine, Queries
from dts.api.schemas import AttachDocumentRequest, DocumentResponse

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("", response_model=list[DocumentResponse])
async def list_documents(
    actor: CurrentActor,
    queries: Queries,
    disbursement_id: int | None = None,
) -> list[DocumentResponse]:
    return [DocumentResponse.from_domain(d) for d in await queries.list_documents(disbursement_id)]


@router.post("", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def attach_document(
    request: AttachDocumentRequest,
    actor: CurrentActor,
    engine: Engine,
) -> DocumentResponse:
    """Attach evidence to a disbursement (Accountant, Admin)."""
    document = await engine.attach_document(
        actor,
        request.disbursement_id,
        request.locator,
        request.content_hash,
    )
    return DocumentResponse.from_domain(document)
