from pydantic import BaseModel, Field
from typing import Optional


class CreateClaimRequest(BaseModel):
    vessel_id: Optional[str] = Field(None, alias="vesselId")
    user_id: Optional[str] = Field(None, alias="userId")
    requested_role: Optional[str] = Field(None, alias="requestedRole")

    model_config = {"populate_by_name": True}


class ApproveClaimRequest(BaseModel):
    request_id: Optional[str] = Field(None, alias="requestId")
    reviewed_by: Optional[str] = Field(None, alias="reviewedBy")
    approval_type: Optional[str] = Field(None, alias="approvalType")

    model_config = {"populate_by_name": True}


class RejectClaimRequest(BaseModel):
    request_id: Optional[str] = Field(None, alias="requestId")
    reviewed_by: Optional[str] = Field(None, alias="reviewedBy")
    review_notes: Optional[str] = Field(None, alias="reviewNotes")

    model_config = {"populate_by_name": True}


class ReprovisionClaimRequest(BaseModel):
    request_id: Optional[str] = Field(None, alias="requestId")

    model_config = {"populate_by_name": True}
