from pydantic import BaseModel, Field
from typing import Optional


# 必須チェックはサービス層で行う (欠落時のエラーメッセージを揃えるため全て Optional)
class ChangePlanRequest(BaseModel):
    subscription_id: Optional[str] = Field(None, alias="subscriptionId")
    price_id: Optional[str] = Field(None, alias="priceId")
    user_id: Optional[str] = Field(None, alias="userId")

    model_config = {"populate_by_name": True}


class CancelSubscriptionRequest(BaseModel):
    subscription_id: Optional[str] = Field(None, alias="subscriptionId")
    cancel_at_period_end: bool = Field(False, alias="cancelAtPeriodEnd")

    model_config = {"populate_by_name": True}


class ResumeSubscriptionRequest(BaseModel):
    subscription_id: Optional[str] = Field(None, alias="subscriptionId")

    model_config = {"populate_by_name": True}
