"""
Predefined subscription plans.

Plans are built additively: each tier lists exactly what it adds on top of the
previous one, so a feature added to the registry is never granted to a lower
tier by accident.
"""
from decimal import Decimal
from typing import Any, Iterable, Mapping

from app.features.permissions.registry import FEATURE_REGISTRY, SYSTEM_ONLY_MODULES
from app.features.subscriptions.models import PlanTier, BillingCycle


# ==========================================
# FEATURE BUCKETS
# ==========================================

# Foundation features every tier gets
COMMON_FEATURES: dict[str, list[str]] = {
    "attendance": ["view", "viewMyAttendance", "webCheckIn", "mobileCheckIn"],
    "products": ["view"],
    "leaves": ["view", "viewOwn", "viewDetails", "create"],
    "dashboard": ["view", "viewOwnStats"],
    "employees": ["viewOwn"],
    "odometer": ["view", "record"],
}

# What Standard adds on top of Basic
STANDARD_UPGRADES: dict[str, list[str]] = {
    "attendance": ["viewTeamAttendance", "markHoliday", "updateAttendance", "biometricSync"],
    "products": ["create", "update"],
    "leaves": ["update", "viewTeamLeaves"],
    "parties": ["view"],
    "prospects": ["view", "create", "update", "transferToParty"],
    "sites": ["view", "uploadImage", "deleteImage"],
    "orderLists": ["view", "createEstimate", "createInvoice", "updateStatus"],
    "collections": ["view", "collectPayment"],
    "beatPlan": ["view", "startExecution", "markVisit"],
    "tourPlan": ["view", "viewOwn", "create", "update"],
    "notes": ["view", "viewOwn", "create", "update"],
    "expenses": ["view", "viewOwn", "viewDetails", "create", "uploadReceipt", "viewCategories"],
    "miscellaneousWork": ["view", "viewOwn", "create", "update"],
    "employees": ["view", "viewTeamEmployees"],
    "settings": ["view", "manageUsers"],
}


def merge_features(*buckets: Mapping[str, Iterable[str]]) -> dict[str, dict[str, bool]]:
    """
    Merge feature buckets into a ``module -> feature -> True`` map.
    """
    combined: dict[str, dict[str, bool]] = {}
    for bucket in buckets:
        for module, features in bucket.items():
            module_map = combined.setdefault(module, {})
            for key in features:
                module_map[key] = True
    return combined


def all_features() -> dict[str, dict[str, bool]]:
    """Every registered feature enabled, excluding system-only modules."""
    return {
        module: {key: True for key in features}
        for module, features in FEATURE_REGISTRY.items()
        if module not in SYSTEM_ONLY_MODULES
    }


def _standard_features() -> dict[str, dict[str, bool]]:
    return merge_features(COMMON_FEATURES, STANDARD_UPGRADES)


# ==========================================
# PLAN DEFINITIONS
# ==========================================

DEFAULT_PLANS: list[dict[str, Any]] = [
    {
        "name": "Basic",
        "tier": PlanTier.BASIC,
        "description": "Essential features for small teams",
        "max_employees": 5,
        "price_amount": Decimal("2999"),
        "currency": "INR",
        "billing_cycle": BillingCycle.YEARLY,
        "enabled_modules": sorted(COMMON_FEATURES),
        "module_features": merge_features(COMMON_FEATURES),
        "is_system_plan": True,
    },
    {
        "name": "Standard",
        "tier": PlanTier.STANDARD,
        "description": "Advanced features for growing businesses",
        "max_employees": 25,
        "price_amount": Decimal("7999"),
        "currency": "INR",
        "billing_cycle": BillingCycle.YEARLY,
        "enabled_modules": sorted(_standard_features()),
        "module_features": _standard_features(),
        "is_system_plan": True,
    },
    {
        "name": "Premium",
        "tier": PlanTier.PREMIUM,
        "description": "Full access with analytics and live tracking",
        "max_employees": 50,
        "price_amount": Decimal("14999"),
        "currency": "INR",
        "billing_cycle": BillingCycle.YEARLY,
        "enabled_modules": sorted(all_features()),
        "module_features": all_features(),
        "is_system_plan": True,
    },
]


def get_default_plan(tier: PlanTier) -> dict[str, Any]:
    for plan in DEFAULT_PLANS:
        if plan["tier"] == tier:
            return plan
    raise KeyError(tier)
