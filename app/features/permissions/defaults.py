"""
Built-in role classification and compiled-in default permission tables.

Built-in roles are used only when a user has no custom role assigned; a custom
role fully replaces these defaults.
"""
from types import MappingProxyType
from typing import Mapping

from app.core import config
from app.features.permissions.registry import FEATURE_REGISTRY


# ============================================
# ROLE CLASSIFICATION
# ============================================
SYSTEM_ROLES: tuple[str, ...] = config.SYSTEM_ROLES
ORG_ADMIN_ROLE = "admin"
MEMBER_ROLE = "member"
ORGANIZATION_ROLES: tuple[str, ...] = (ORG_ADMIN_ROLE, MEMBER_ROLE)


def _all_enabled() -> dict[str, dict[str, bool]]:
    return {
        module: {key: True for key in features}
        for module, features in FEATURE_REGISTRY.items()
    }


def _granted(grants: dict[str, list[str]]) -> dict[str, dict[str, bool]]:
    """Expand ``module -> [keys]`` into a full map with every other key false."""
    table: dict[str, dict[str, bool]] = {}
    for module, features in FEATURE_REGISTRY.items():
        allowed = set(grants.get(module, []))
        table[module] = {key: key in allowed for key in features}
    return table


# Admins have every feature enabled for every module
ADMIN_DEFAULT_PERMISSIONS = _all_enabled()

# Members get a narrow self-service subset
MEMBER_DEFAULT_PERMISSIONS = _granted({
    "attendance": ["view", "viewMyAttendance", "webCheckIn", "mobileCheckIn"],
    "products": ["view"],
    "prospects": ["view", "create", "update"],
    "parties": ["view"],
    "sites": ["view"],
    "orderLists": ["view", "createEstimate", "createInvoice"],
    "collections": ["view", "collectPayment"],
    "beatPlan": ["view", "startExecution", "markVisit"],
    "tourPlan": ["view", "viewOwn", "create"],
    "expenses": ["view", "viewOwn", "viewDetails", "create", "uploadReceipt", "viewCategories"],
    "leaves": ["view", "viewOwn", "viewDetails", "create"],
    "dashboard": ["view", "viewOwnStats"],
    "notes": ["view", "viewOwn", "create"],
    "miscellaneousWork": ["view", "viewOwn", "create"],
    "employees": ["viewOwn"],
    "odometer": ["view", "record"],
})

_DEFAULTS: Mapping[str, Mapping[str, Mapping[str, bool]]] = MappingProxyType({
    ORG_ADMIN_ROLE: ADMIN_DEFAULT_PERMISSIONS,
    MEMBER_ROLE: MEMBER_DEFAULT_PERMISSIONS,
})


# ============================================
# HELPER FUNCTIONS
# ============================================

def is_system_role(role: str | None) -> bool:
    return role in SYSTEM_ROLES


def is_org_admin(role: str | None) -> bool:
    return role == ORG_ADMIN_ROLE


def get_role_default_features(role: str | None, module: str) -> Mapping[str, bool]:
    """
    Get the default feature map of a built-in role for one module.

    Unknown roles have no defaults.
    """
    return _DEFAULTS.get(role or "", {}).get(module, {})


def has_default_feature(role: str | None, module: str, feature_key: str) -> bool:
    return get_role_default_features(role, module).get(feature_key) is True


def create_empty_permissions() -> dict[str, dict[str, bool]]:
    """Permission map with every registered feature disabled."""
    return _granted({})
