"""
Feature registry: the capability vocabulary shared by plans, roles and route guards.

Every module maps its granular feature keys to a human description. The registry
is built once at import time and exposed read-only; adding a key is backward
compatible (stored roles and plans treat it as false), removing or renaming a key
must be coordinated with every stored Role/SubscriptionPlan that references it.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional


_REGISTRY: dict[str, dict[str, str]] = {
    # ============================================
    # ATTENDANCE
    # ============================================
    "attendance": {
        "view": "Open the attendance module",
        "viewMyAttendance": "View own attendance records",
        "viewTeamAttendance": "View subordinates/team attendance records",
        "viewAllAttendance": "View attendance of every employee in the organization",
        "webCheckIn": "Allow check-in via web portal",
        "mobileCheckIn": "Allow check-in via mobile app",
        "remoteCheckIn": "Allow check-in from anywhere (no geofence)",
        "markHoliday": "Admin: Mark holiday for organization",
        "markAbsentees": "Admin: Mark absentees manually",
        "updateAttendance": "Correct an attendance record",
        "biometricSync": "Enable biometric device sync",
        "exportPdf": "Export attendance as PDF",
        "exportExcel": "Export attendance as Excel",
    },
    # ============================================
    # PRODUCTS
    # ============================================
    "products": {
        "view": "View product details",
        "create": "Add new product",
        "update": "Edit product details",
        "delete": "Delete product",
        "bulkImport": "Import products via CSV",
        "bulkDelete": "Mass delete products",
        "exportPdf": "Export product list as PDF",
        "exportExcel": "Export product list as Excel",
    },
    # ============================================
    # PROSPECTS
    # ============================================
    "prospects": {
        "view": "View prospects",
        "viewTeamProspects": "View prospects owned by subordinates",
        "viewAllProspects": "View every prospect in the organization",
        "create": "Add new prospect",
        "update": "Edit prospect details",
        "delete": "Delete prospect",
        "transferToParty": "Transfer prospect to party (convert to customer)",
        "manageCategories": "Create/edit prospect categories",
        "import": "Import prospects via CSV",
        "assign": "Assign prospect to a user",
        "exportPdf": "Export prospects as PDF",
    },
    # ============================================
    # PARTIES
    # ============================================
    "parties": {
        "view": "View parties/customers",
        "viewTeamParties": "View parties assigned to subordinates",
        "viewAllParties": "View every party in the organization",
        "create": "Add new party",
        "update": "Edit party details",
        "delete": "Delete party",
        "import": "Import parties via CSV",
        "assign": "Assign party to a user",
        "exportPdf": "Export party list as PDF",
    },
    # ============================================
    # SITES
    # ============================================
    "sites": {
        "view": "View sites/locations",
        "create": "Add new site",
        "update": "Edit site details",
        "delete": "Delete site",
        "assign": "Assign users to sites",
        "uploadImage": "Upload site images",
        "deleteImage": "Delete site images",
    },
    # ============================================
    # ORDER LISTS / INVOICES
    # ============================================
    "orderLists": {
        "view": "View orders/estimates/invoices",
        "viewTeamOrders": "View orders created by subordinates",
        "viewAllOrders": "View every order in the organization",
        "createEstimate": "Create quote/estimate",
        "createInvoice": "Create invoice",
        "convertToInvoice": "Convert estimate to invoice",
        "updateStatus": "Change order status (Pending -> Delivered)",
        "delete": "Delete order record",
        "bulkDelete": "Mass delete orders",
        "exportPdf": "Export orders as PDF",
    },
    # ============================================
    # COLLECTIONS
    # ============================================
    "collections": {
        "view": "View collection entries",
        "viewTeamCollections": "View collections recorded by subordinates",
        "viewAllCollections": "View every collection in the organization",
        "collectPayment": "Add payment entry",
        "verifyPayment": "Verify/approve payment",
        "updateChequeStatus": "Update cheque status (cleared/bounced)",
        "delete": "Delete collection entry",
    },
    # ============================================
    # BEAT PLANS
    # ============================================
    "beatPlan": {
        "view": "View beat plans",
        "viewTeamBeatPlans": "View beat plans of subordinates",
        "viewAllBeatPlans": "View every beat plan in the organization",
        "create": "Create new beat plan",
        "assign": "Assign beat plan to user",
        "update": "Edit existing beat plan",
        "delete": "Delete beat plan",
        "startExecution": "Start executing a beat plan",
        "markVisit": "Mark a party visit",
        "adhocVisits": "Allow visiting parties not in plan",
    },
    # ============================================
    # TOUR PLANS
    # ============================================
    "tourPlan": {
        "view": "View tour plans",
        "viewOwn": "View own tour plans",
        "viewTeamTourPlans": "View tour plans of subordinates",
        "viewAllTourPlans": "View every tour plan in the organization",
        "create": "Create tour plan",
        "update": "Edit tour plan",
        "updateStatus": "Approve or reject tour plan",
        "delete": "Delete tour plan",
        "bulkDelete": "Bulk delete tour plans",
        "exportPdf": "Export tour plans as PDF",
    },
    # ============================================
    # LIVE TRACKING
    # ============================================
    "liveTracking": {
        "view": "View live map with team locations",
        "viewSessionHistory": "View tracking sessions",
        "historyPlayback": "Replay route history for a date",
    },
    # ============================================
    # EXPENSE CLAIMS
    # ============================================
    "expenses": {
        "view": "Open the expense claims module",
        "viewOwn": "View own expense claims",
        "viewTeamClaims": "View expense claims of subordinates",
        "viewAllClaims": "View every expense claim in the organization",
        "viewDetails": "Access detailed breakdown, receipts, and approval history",
        "create": "Submit and record new expense claims",
        "update": "Edit specific details of an existing expense record",
        "updateStatus": "Approve, reject, or mark expense claims as reimbursed",
        "delete": "Delete expense claim",
        "bulkDelete": "Bulk delete expense claims",
        "exportPdf": "Export expense reports as PDF documents for filing",
        "exportExcel": "Export expense data to Excel spreadsheet for accounting",
        "uploadReceipt": "Upload receipt images for expense claims",
        "viewCategories": "View expense categories",
        "createCategory": "Add new expense category",
        "updateCategory": "Edit expense category",
        "deleteCategory": "Delete expense category",
    },
    # ============================================
    # LEAVE REQUESTS
    # ============================================
    "leaves": {
        "view": "Open the leave requests module",
        "viewOwn": "View own leaves only",
        "viewTeamLeaves": "View leave requests of subordinates",
        "viewAllLeaves": "View every leave request in the organization",
        "viewDetails": "View a leave request in detail",
        "create": "Apply for leave",
        "update": "Edit a pending leave request",
        "updateStatus": "Approve or reject leave requests",
        "delete": "Delete leave request",
        "bulkDelete": "Bulk delete leave requests",
        "exportPdf": "Export leave requests as PDF",
        "exportExcel": "Export leave requests as Excel",
    },
    # ============================================
    # DASHBOARD
    # ============================================
    "dashboard": {
        "view": "View dashboard",
        "viewOwnStats": "View own statistics only",
        "viewTeamStats": "View team statistics",
        "viewOrgStats": "View organization-wide statistics",
    },
    # ============================================
    # ANALYTICS
    # ============================================
    "analytics": {
        "view": "View analytics reports",
        "salesReports": "Access sales reports",
        "performanceReports": "Access performance reports",
        "attendanceReports": "Access attendance reports",
        "customReports": "Create custom reports",
        "exportReports": "Export reports as PDF/Excel",
    },
    # ============================================
    # NOTES
    # ============================================
    "notes": {
        "view": "View notes",
        "viewOwn": "View own notes",
        "viewTeamNotes": "View notes written by subordinates",
        "viewAllNotes": "View every note in the organization",
        "create": "Create note",
        "update": "Edit note",
        "delete": "Delete note",
        "share": "Share note with team",
    },
    # ============================================
    # MISCELLANEOUS WORK
    # ============================================
    "miscellaneousWork": {
        "view": "View miscellaneous work entries",
        "viewOwn": "View own miscellaneous work entries",
        "viewTeamWork": "View miscellaneous work of subordinates",
        "viewAllWork": "View every miscellaneous work entry in the organization",
        "create": "Create miscellaneous work entry",
        "update": "Edit miscellaneous work",
        "delete": "Delete miscellaneous work",
        "approve": "Approve miscellaneous work",
    },
    # ============================================
    # SETTINGS / ORGANIZATION
    # ============================================
    "settings": {
        "view": "View organization settings",
        "manage": "Edit organization settings",
        "manageUsers": "Add/edit organization users",
        "manageRoles": "Create/edit custom roles",
        "manageSubscription": "View/manage subscription",
    },
    # ============================================
    # EMPLOYEES
    # ============================================
    "employees": {
        "view": "View employee list",
        "viewOwn": "View own profile only",
        "viewTeamEmployees": "View subordinates' profiles",
        "viewAllEmployees": "View every employee in the organization",
        "create": "Add new employee",
        "update": "Edit employee details",
        "delete": "Delete/deactivate employee",
        "assignSupervisor": "Set supervisor (reportsTo)",
    },
    # ============================================
    # ODOMETER
    # ============================================
    "odometer": {
        "view": "View odometer readings",
        "viewTeamOdometer": "View odometer readings of subordinates",
        "viewAllOdometer": "View every odometer reading in the organization",
        "record": "Add odometer reading",
        "update": "Edit odometer reading",
        "approve": "Approve odometer reading",
        "delete": "Delete odometer reading",
        "exportExcel": "Export odometer readings as Excel",
    },
}


FEATURE_REGISTRY: Mapping[str, Mapping[str, str]] = MappingProxyType(
    {module: MappingProxyType(dict(features)) for module, features in _REGISTRY.items()}
)

# Modules that must never be granted through an organization subscription plan
SYSTEM_ONLY_MODULES: frozenset[str] = frozenset({"systemUsers"})

# Conventional feature checked by module-level (coarse) access checks
BASE_VIEW_FEATURE = "view"


@dataclass(frozen=True)
class ModuleScope:
    """Visibility and approval feature conventions for one module."""
    view_all: Optional[str] = None
    view_team: Optional[str] = None
    approve: Optional[str] = None


MODULE_SCOPES: Mapping[str, ModuleScope] = MappingProxyType({
    "attendance": ModuleScope(view_all="viewAllAttendance", view_team="viewTeamAttendance"),
    "prospects": ModuleScope(view_all="viewAllProspects", view_team="viewTeamProspects"),
    "parties": ModuleScope(view_all="viewAllParties", view_team="viewTeamParties"),
    "orderLists": ModuleScope(view_all="viewAllOrders", view_team="viewTeamOrders"),
    "collections": ModuleScope(
        view_all="viewAllCollections", view_team="viewTeamCollections", approve="verifyPayment"
    ),
    "beatPlan": ModuleScope(view_all="viewAllBeatPlans", view_team="viewTeamBeatPlans"),
    "tourPlan": ModuleScope(
        view_all="viewAllTourPlans", view_team="viewTeamTourPlans", approve="updateStatus"
    ),
    "expenses": ModuleScope(view_all="viewAllClaims", view_team="viewTeamClaims", approve="updateStatus"),
    "leaves": ModuleScope(view_all="viewAllLeaves", view_team="viewTeamLeaves", approve="updateStatus"),
    "notes": ModuleScope(view_all="viewAllNotes", view_team="viewTeamNotes"),
    "miscellaneousWork": ModuleScope(view_all="viewAllWork", view_team="viewTeamWork", approve="approve"),
    "employees": ModuleScope(view_all="viewAllEmployees", view_team="viewTeamEmployees"),
    "odometer": ModuleScope(view_all="viewAllOdometer", view_team="viewTeamOdometer", approve="approve"),
})


def is_valid_feature(module: str, feature_key: str) -> bool:
    """Check if a feature key exists for a module."""
    features = FEATURE_REGISTRY.get(module)
    return features is not None and feature_key in features


def features_of(module: str) -> frozenset[str]:
    """All feature keys of a module (empty for an unknown module)."""
    return frozenset(FEATURE_REGISTRY.get(module, {}))


def all_modules() -> frozenset[str]:
    return frozenset(FEATURE_REGISTRY)


def feature_description(module: str, feature_key: str) -> str:
    return FEATURE_REGISTRY.get(module, {}).get(feature_key, "")


def scope_of(module: str) -> ModuleScope:
    """Visibility/approval conventions of a module; empty scope if it defines none."""
    return MODULE_SCOPES.get(module, ModuleScope())


def validate_permission_map(permissions: Mapping[str, Any]) -> list[str]:
    """
    Validate a nested ``module -> feature -> bool`` map against the registry.

    Used at write time by role and plan administration so that stored maps only
    ever contain known keys with boolean values.

    Returns:
        List of human-readable problems (empty when the map is valid)
    """
    problems: list[str] = []
    for module, features in permissions.items():
        if module not in FEATURE_REGISTRY:
            problems.append(f"Unknown module '{module}'")
            continue
        if not isinstance(features, Mapping):
            problems.append(f"Module '{module}' must map feature keys to booleans")
            continue
        for feature_key, value in features.items():
            if not is_valid_feature(module, feature_key):
                problems.append(f"Unknown feature '{module}.{feature_key}'")
            elif not isinstance(value, bool):
                problems.append(f"Feature '{module}.{feature_key}' must be true or false")
    return problems


def check_registry_consistency(
    registry: Mapping[str, Mapping[str, str]],
    scopes: Mapping[str, ModuleScope]
) -> None:
    """
    Fail fast on a broken vocabulary.

    Raises:
        RuntimeError: a scope convention names an unregistered key, or a module
            lacks the base view feature
    """
    for module, scope in scopes.items():
        for key in (scope.view_all, scope.view_team, scope.approve):
            if key is not None and key not in registry.get(module, {}):
                raise RuntimeError(f"{module}.{key} is not registered")
    for module, features in registry.items():
        if BASE_VIEW_FEATURE not in features:
            raise RuntimeError(f"{module} has no '{BASE_VIEW_FEATURE}' feature")


check_registry_consistency(FEATURE_REGISTRY, MODULE_SCOPES)
