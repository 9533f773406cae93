"""Error taxonomy for enrollment and verification.

Every error carries the HTTP status it maps to and a caller-facing message.
Validation errors are 4xx and are never retried by the service; the caller has
to send corrected input. ``InternalError`` and its subclasses are 5xx.
"""

from typing import Any, Dict, Optional

from fastapi import status


class FaceVerificationError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Internal server error."

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.message
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, **self.context}


class NoPayload(FaceVerificationError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "No image provided."


class ImageDecodeError(FaceVerificationError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid base64 image data."


class PayloadTooLarge(ImageDecodeError):
    status_code = 413
    message = "Image payload is too large."


class NoFaceDetected(FaceVerificationError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "No face detected in the given image."


class ReferenceNotFound(FaceVerificationError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Reference face not found. Please enroll a face first."


class DescriptorLengthMismatch(FaceVerificationError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Descriptor length mismatch. Cannot compare faces."

    def __init__(self, input_length: int, reference_length: int):
        super().__init__(
            input_descriptor_length=input_length,
            reference_descriptor_length=reference_length,
        )
        self.input_length = input_length
        self.reference_length = reference_length


class InternalError(FaceVerificationError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Internal server error."


class PersistenceError(InternalError):
    message = "Error saving the reference face."
