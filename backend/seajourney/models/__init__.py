# 全モデルをインポート (Alembic autogenerate用)
from seajourney.models.user import User
from seajourney.models.vessel import Vessel
from seajourney.models.testimonial import Testimonial
from seajourney.models.approved_testimonial import ApprovedTestimonial
from seajourney.models.vessel_claim_request import VesselClaimRequest
from seajourney.models.vessel_assignment import VesselAssignment
from seajourney.models.vessel_signing_authority import VesselSigningAuthority
from seajourney.models.subscription_plan_change import SubscriptionPlanChange
from seajourney.models.processed_stripe_event import ProcessedStripeEvent

__all__ = [
    "User",
    "Vessel",
    "Testimonial",
    "ApprovedTestimonial",
    "VesselClaimRequest",
    "VesselAssignment",
    "VesselSigningAuthority",
    "SubscriptionPlanChange",
    "ProcessedStripeEvent",
]
