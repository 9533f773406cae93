from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ImagePayload(BaseModel):
    """Request body carrying one image."""

    image: Optional[str] = Field(
        default=None,
        description="Base64-encoded image, optionally as a data URL (data:<mime>;base64,...)",
    )


class EnrollResponse(BaseModel):
    message: str
    enrolled_at: datetime


class VerifyResponse(BaseModel):
    """Verification verdict for one image."""

    match: bool = Field(description="True when distance < threshold")
    distance: str = Field(description="Euclidean distance, 4 decimal digits")
    similarity: str = Field(description="1 - distance, 4 decimal digits")
    threshold: float = Field(description="Distance threshold used for the decision")

    model_config = {
        "json_schema_extra": {
            "example": {
                "match": True,
                "distance": "0.4500",
                "similarity": "0.5500",
                "threshold": 0.6,
            }
        }
    }


class ReferenceStatusResponse(BaseModel):
    enrolled: bool
    enrolled_at: Optional[datetime] = None
    descriptor_length: Optional[int] = None
