"""Stripe Price → サブスクリプションティア名の解決 (表示用。課金判断には使わない)"""

DEFAULT_TIER = "standard"
FREE_TIER = "free"

_TIER_ALIASES = {"professional": "pro"}

# ニックネームからの推定 (上から順に判定)
_NICKNAME_KEYWORDS = [
    ("premium", "premium"),
    ("professional", "pro"),
    ("pro", "pro"),
    ("standard", "standard"),
]


def normalize_tier(tier: str | None) -> str:
    if not tier:
        return FREE_TIER
    tier = tier.strip().lower()
    return _TIER_ALIASES.get(tier, tier)


def resolve_tier(price: dict | None) -> str:
    """
    Priceからティア名を取得。

    price.metadata.tier → product.metadata.tier → price.metadata.price_tier
    → nickname のキーワード → "standard" の順にフォールバックする。
    """
    if not price:
        return DEFAULT_TIER

    price_meta = price.get("metadata") or {}
    product = price.get("product")
    product_meta = (product.get("metadata") or {}) if isinstance(product, dict) else {}

    for candidate in (price_meta.get("tier"), product_meta.get("tier"), price_meta.get("price_tier")):
        if candidate:
            return normalize_tier(candidate)

    nickname = (price.get("nickname") or "").lower()
    for keyword, tier in _NICKNAME_KEYWORDS:
        if keyword in nickname:
            return tier
    return DEFAULT_TIER


def format_tier_name(tier: str | None) -> str:
    """メール表示用 ("sj_pro_plus" → "Pro Plus")"""
    if not tier:
        return "Free"
    cleaned = tier.strip()
    for prefix in ("sj_", "sea_journey_"):
        if cleaned.lower().startswith(prefix):
            cleaned = cleaned[len(prefix):]
    return " ".join(word.capitalize() for word in cleaned.split("_") if word)
