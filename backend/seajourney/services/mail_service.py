"""トランザクションメール送信 (署名結果、プラン変更、キャプテン承認)

いずれも付随処理のため、送信失敗はログに残して False を返すだけにする。
"""
from datetime import datetime
from pathlib import Path
from typing import Optional

import resend
from jinja2 import Environment, FileSystemLoader, select_autoescape

from seajourney.core.config import settings
from seajourney.core.logging import get_logger
from seajourney.services.tiers import format_tier_name

logger = get_logger(__name__)

template_dir = Path(__file__).parent.parent / "templates" / "email"
jinja_env = Environment(
    loader=FileSystemLoader(str(template_dir)),
    autoescape=select_autoescape(["html"]),
)


def _send(to_email: str, subject: str, template_name: str, **context) -> bool:
    resend.api_key = settings.RESEND_API_KEY
    template = jinja_env.get_template(template_name)
    html = template.render(site_name=settings.SITE_NAME, site_url=settings.SITE_URL, **context)
    resend.Emails.send({
        "from": settings.RESEND_FROM_EMAIL,
        "to": [to_email],
        "subject": subject,
        "html": html,
    })
    return True


def send_testimonial_decision_email(
    to_email: str,
    crew_name: str,
    vessel_name: str,
    decision: str,
    rejection_reason: Optional[str] = None,
) -> bool:
    """キャプテンの署名結果をクルーに通知"""
    approved = decision == "approve"
    subject = (
        f"Your testimonial for {vessel_name} has been signed off"
        if approved
        else f"Your testimonial for {vessel_name} was declined"
    )
    try:
        _send(
            to_email,
            subject,
            "testimonial_decision.html",
            crew_name=crew_name,
            vessel_name=vessel_name,
            approved=approved,
            rejection_reason=rejection_reason,
        )
        logger.info(f"署名結果メール送信: {to_email}, decision={decision}")
        return True
    except Exception as e:
        logger.error(f"署名結果メール送信失敗: {to_email} - {e}")
        return False


def send_plan_change_email(
    to_email: str,
    tier: str,
    previous_tier: Optional[str] = None,
    event_type: str = "upgraded",
    effective_date: Optional[datetime] = None,
) -> bool:
    """プラン変更通知 (upgraded / downgraded)"""
    tier_name = format_tier_name(tier)
    if event_type == "downgraded":
        subject = f"Your {settings.SITE_NAME} plan change to {tier_name} is scheduled"
    else:
        subject = f"You're now on the {settings.SITE_NAME} {tier_name} plan"
    try:
        _send(
            to_email,
            subject,
            "plan_change.html",
            tier_name=tier_name,
            previous_tier_name=format_tier_name(previous_tier) if previous_tier else None,
            event_type=event_type,
            effective_date=effective_date.strftime("%d %B %Y") if effective_date else None,
        )
        logger.info(f"プラン変更メール送信: {to_email}, {event_type}")
        return True
    except Exception as e:
        logger.error(f"プラン変更メール送信失敗: {to_email} - {e}")
        return False


def send_captaincy_approved_email(to_email: str, captain_name: str, vessel_name: str) -> bool:
    """キャプテン申請の承認完了通知"""
    try:
        _send(
            to_email,
            f"You are now a captain of {vessel_name}",
            "captaincy_approved.html",
            captain_name=captain_name,
            vessel_name=vessel_name,
        )
        logger.info(f"キャプテン承認メール送信: {to_email}")
        return True
    except Exception as e:
        logger.error(f"キャプテン承認メール送信失敗: {to_email} - {e}")
        return False
