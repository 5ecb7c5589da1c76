from pydantic import BaseModel, Field
from typing import Optional


class SignoffDecisionRequest(BaseModel):
    token: Optional[str] = None
    email: Optional[str] = None
    decision: Optional[str] = None
    rejection_reason: Optional[str] = Field(None, alias="rejectionReason")

    model_config = {"populate_by_name": True}


class CreateSnapshotRequest(BaseModel):
    testimonial_id: Optional[str] = Field(None, alias="testimonialId")

    model_config = {"populate_by_name": True}
