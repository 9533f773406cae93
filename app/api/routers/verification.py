from typing import Optional

from fastapi import APIRouter, Depends, status

from app.api.dependencies import get_verification_service
from app.core.descriptor import format_score
from app.schema.verification import (
    EnrollResponse,
    ImagePayload,
    ReferenceStatusResponse,
    VerifyResponse,
)
from app.services.verification import FaceVerificationService

router = APIRouter(tags=["verification"])


@router.post(
    "/enroll",
    response_model=EnrollResponse,
    status_code=status.HTTP_201_CREATED,
)
async def enroll_face(
    payload: Optional[ImagePayload] = None,
    service: FaceVerificationService = Depends(get_verification_service),
):
    """Enroll the reference face, replacing any previous enrollment."""
    outcome = await service.enroll(payload.image if payload else None)
    return EnrollResponse(message=outcome.message, enrolled_at=outcome.enrolled_at)


@router.post("/verify", response_model=VerifyResponse)
async def verify_face(
    payload: Optional[ImagePayload] = None,
    service: FaceVerificationService = Depends(get_verification_service),
):
    """Check whether the image shows the enrolled person."""
    result = await service.verify(payload.image if payload else None)
    return VerifyResponse(
        match=result.match,
        distance=format_score(result.distance),
        similarity=format_score(result.similarity),
        threshold=result.threshold,
    )


@router.get("/reference", response_model=ReferenceStatusResponse)
async def reference_status(
    service: FaceVerificationService = Depends(get_verification_service),
):
    status_ = await service.reference_status()
    return ReferenceStatusResponse(
        enrolled=status_.enrolled,
        enrolled_at=status_.enrolled_at,
        descriptor_length=status_.descriptor_length,
    )
