# coding: utf-8
"""
Affiliate & Reseller Configuration

Defaults used when the admin-editable settings rows are first created,
plus reseller credit pricing.
"""

from src.core.enums import PlanType


# =======================
# AFFILIATE DEFAULTS (PKR)
# =======================

AFFILIATE_DEFAULTS = {
    "is_enabled": True,
    "empire_earning": 300,           # First Empire purchase
    "scale_earning": 100,            # First Scale purchase
    "empire_renewal_earning": 150,   # Empire renewal
    "scale_renewal_earning": 50,     # Scale renewal
    "min_withdrawal": 1000,
}

# Plans that pay referral earnings
EARNING_PLANS = (PlanType.EMPIRE, PlanType.SCALE)


# =======================
# RESELLER PRICING (credits)
# =======================

RESELLER_PLAN_COSTS = {
    PlanType.SCALE: 900,
    PlanType.EMPIRE: 1500,
}

# Plans a reseller may provision
RESELLER_PLANS = tuple(RESELLER_PLAN_COSTS.keys())


# =======================
# REFERRAL CODE FORMAT
# =======================

UID_PREFIX = "VEO-"
UID_LENGTH = 6


def get_reseller_plan_cost(plan: PlanType) -> int:
    """
    Credit cost for provisioning a plan

    Raises:
        ValueError: if resellers cannot sell this plan
    """
    plan = PlanType(plan)
    if plan not in RESELLER_PLAN_COSTS:
        raise ValueError(f"Resellers cannot provision plan '{plan.value}'")
    return RESELLER_PLAN_COSTS[plan]
