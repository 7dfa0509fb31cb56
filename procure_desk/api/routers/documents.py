from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import ValidationError
from ..deps import ExtractResponse, get_pipeline
from ...services.document_pipeline import DocumentExtractionPipeline, UploadedDocument
from ...services.extraction_types import DocumentType
from ...services.form_merge import RequestFormState, merge_extraction

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("/{request_id}/extract", response_model=ExtractResponse)
async def extract(
    request_id: str,
    file: UploadFile = File(...),
    document_type: DocumentType = Form(DocumentType.PROFORMA),
    form: str | None = Form(None),
    pipeline: DocumentExtractionPipeline = Depends(get_pipeline),
):
    """
    Upload a proforma or receipt and wait for its extraction job.

    Optional ``form`` is the in-progress request form as JSON; when given,
    the extracted vendor and line items are merged into it.
    """
    form_state = None
    if form:
        try:
            form_state = RequestFormState.model_validate_json(form)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=f"Invalid form state: {e.errors()[0]['msg']}")

    content = await file.read()
    document = UploadedDocument(
        filename=file.filename or "document",
        content=content,
        content_type=file.content_type or "application/octet-stream",
    )
    outcome = await pipeline.process(request_id, document, document_type)

    merged = merge_extraction(form_state, outcome.result) if form_state is not None else None
    return ExtractResponse(
        request_id=outcome.request_id,
        document_type=outcome.document_type,
        job_id=outcome.job_id,
        attempts=outcome.attempts,
        result=outcome.result,
        file_info=outcome.file_info,
        form=merged,
        total_amount=merged.total_amount if merged is not None else None,
    )
