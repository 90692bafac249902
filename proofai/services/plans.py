"""
Plan Catalog - subscription plans, one-time packs and their limits.

Plan names are the canonical underscore spellings; legacy hyphenated names
are normalized on the way in.
"""

from dataclasses import dataclass

from proofai.config import Settings
from proofai.models.domain import STARTER_PLAN, PlanFeatures

LIFETIME_PLAN = "lifetime"
BUSINESS_PLAN = "business"

EMERGENCY_PACK = "emergency_pack"
COURT_CERTIFICATION_PACK = "court_certification"


@dataclass(frozen=True)
class PlanDefinition:
    """Static definition of a subscription plan."""

    name: str
    display_name: str
    minute_limit: int
    price_minor: int
    features: PlanFeatures
    includes_court_certification: bool = False


_PAID_FEATURES = PlanFeatures(
    pdf_export=True,
    folders=True,
    watermark=False,
    ai_summary=True,
    custom_branding=True,
    storage_days=None,
)

PLANS: dict[str, PlanDefinition] = {
    STARTER_PLAN: PlanDefinition(
        name=STARTER_PLAN,
        display_name="Starter (Free)",
        minute_limit=0,
        price_minor=0,
        features=PlanFeatures(),
    ),
    "community": PlanDefinition(
        name="community",
        display_name="Community",
        minute_limit=30,
        price_minor=499,
        features=PlanFeatures(
            pdf_export=True,
            folders=True,
            watermark=False,
            ai_summary=True,
            custom_branding=False,
            storage_days=30,
        ),
    ),
    "self_defender": PlanDefinition(
        name="self_defender",
        display_name="Self-Defender",
        minute_limit=120,
        price_minor=999,
        features=_PAID_FEATURES,
    ),
    "mission_partner": PlanDefinition(
        name="mission_partner",
        display_name="Mission Partner",
        minute_limit=120,
        price_minor=1999,
        features=_PAID_FEATURES,
    ),
    BUSINESS_PLAN: PlanDefinition(
        name=BUSINESS_PLAN,
        display_name="Business",
        minute_limit=300,
        price_minor=4999,
        features=_PAID_FEATURES,
        includes_court_certification=True,
    ),
    LIFETIME_PLAN: PlanDefinition(
        name=LIFETIME_PLAN,
        display_name="Lifetime",
        minute_limit=0,
        price_minor=0,
        features=_PAID_FEATURES,
        includes_court_certification=True,
    ),
}

# Plans that confer baseline paid access on their own
PAID_PLANS: frozenset[str] = frozenset(
    {"community", "self_defender", "mission_partner", BUSINESS_PLAN, LIFETIME_PLAN}
)


def normalize_plan_name(name: str | None) -> str:
    """Canonical plan name; empty or missing means starter."""
    normalized = (name or "").strip().lower().replace("-", "_")
    return normalized or STARTER_PLAN


def get_plan(name: str | None) -> PlanDefinition:
    """Plan definition by name, falling back to starter for unknown plans."""
    return PLANS.get(normalize_plan_name(name), PLANS[STARTER_PLAN])


def is_paid_plan(name: str | None) -> bool:
    return normalize_plan_name(name) in PAID_PLANS


def plan_for_price_id(price_id: str | None, config: Settings) -> PlanDefinition | None:
    """Subscription plan for a Stripe price id, or None if the price is unknown."""
    if not price_id:
        return None
    plan_name = config.subscription_price_ids.get(price_id)
    if plan_name is None:
        return None
    return PLANS[plan_name]


def pack_for_price_id(price_id: str | None, config: Settings) -> str | None:
    """One-time pack name for a Stripe price id, or None."""
    if not price_id:
        return None
    if config.stripe_price_emergency_pack and price_id == config.stripe_price_emergency_pack:
        return EMERGENCY_PACK
    if (
        config.stripe_price_court_certification
        and price_id == config.stripe_price_court_certification
    ):
        return COURT_CERTIFICATION_PACK
    return None
