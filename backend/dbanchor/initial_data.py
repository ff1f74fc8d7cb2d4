"""Initial data: reference districts, modules and system settings; the tables the app requires."""

import logging
from decimal import Decimal

from dbanchor.core.config import settings
from dbanchor.core.facade import TableSpec
from dbanchor.core.seeding import SeedManager
from dbanchor.core.selector import BackendHandle, BackendSelector
from dbanchor.models import IdStrategyEnum, SchemaExpectation, SeedReport

logger = logging.getLogger(__name__)

DISTRICTS = [
    {
        "district_id": "DIS-NAIROBI-CENTRAL",
        "name": "Nairobi Central",
        "description": "Central Nairobi district covering CBD and surrounding areas",
    },
    {
        "district_id": "DIS-EASTLANDS",
        "name": "Eastlands",
        "description": "Eastlands district covering Buruburu, Umoja, Donholm, and surrounding areas",
    },
    {
        "district_id": "DIS-THIKA-ROAD",
        "name": "Thika Road",
        "description": "Thika Road district covering Zimmerman, Kahawa, Roysambu, and surrounding areas",
    },
    {
        "district_id": "DIS-SOUTH-NAIROBI",
        "name": "South Nairobi",
        "description": "South Nairobi district covering Lang'ata, Karen, South C/B, and surrounding areas",
    },
    {
        "district_id": "DIS-WEST-NAIROBI",
        "name": "West Nairobi",
        "description": "West Nairobi district covering Kangemi, Uthiru, Dagoretti, and surrounding areas",
    },
    {
        "district_id": "DIS-NORTH-NAIROBI",
        "name": "Northern Nairobi",
        "description": "Northern Nairobi district covering Muthaiga, Runda, Gigiri, and surrounding areas",
    },
    {
        "district_id": "DIS-EAST-NAIROBI",
        "name": "Eastern Nairobi",
        "description": "Eastern Nairobi district covering Mathare, Huruma, Kariobangi, Dandora, and surrounding areas",
    },
    {
        "district_id": "DIS-SOUTH-EAST-NAIROBI",
        "name": "South East Nairobi",
        "description": "South East Nairobi district covering Industrial Area, Mukuru, Imara Daima, and surrounding areas",
    },
    {
        "district_id": "DIS-OUTSKIRTS-NAIROBI",
        "name": "Outskirts Nairobi",
        "description": "Outskirts Nairobi district covering Kitengela, Rongai, Ngong, Ruai, Juja, Thika, and surrounding areas",
    },
]

MODULES = [
    {
        "module_code": "member_management",
        "module_name": "Member Management",
        "description": "Complete member registration, tracking, and communication system",
        "price_usd": Decimal("29.99"),
        "price_kes": Decimal("3500"),
    },
    {
        "module_code": "finance",
        "module_name": "Finance & Accounting",
        "description": "Tithe tracking, offering management, expense tracking, and financial reports",
        "price_usd": Decimal("49.99"),
        "price_kes": Decimal("5800"),
    },
    {
        "module_code": "hr",
        "module_name": "HR & Payroll",
        "description": "Employee management, attendance tracking, and payroll processing",
        "price_usd": Decimal("39.99"),
        "price_kes": Decimal("4600"),
    },
    {
        "module_code": "homecells",
        "module_name": "HomeCells Management",
        "description": "Organize church into districts, zones, and home cells with hierarchy management",
        "price_usd": Decimal("24.99"),
        "price_kes": Decimal("2900"),
    },
    {
        "module_code": "welfare",
        "module_name": "Welfare & Support",
        "description": "Track member assistance, support requests, and welfare programs",
        "price_usd": Decimal("19.99"),
        "price_kes": Decimal("2300"),
    },
    {
        "module_code": "events",
        "module_name": "Events Management",
        "description": "Plan, organize, and track church events and services",
        "price_usd": Decimal("19.99"),
        "price_kes": Decimal("2300"),
    },
    {
        "module_code": "inventory",
        "module_name": "Inventory Management",
        "description": "Track church assets, equipment, and supplies",
        "price_usd": Decimal("19.99"),
        "price_kes": Decimal("2300"),
    },
    {
        "module_code": "appointments",
        "module_name": "Appointments & Scheduling",
        "description": "Schedule and manage pastoral appointments and counseling sessions",
        "price_usd": Decimal("14.99"),
        "price_kes": Decimal("1700"),
    },
]

SYSTEM_SETTINGS = [
    {"setting_key": "church_name", "setting_value": "The Seed of Abraham Ministry (TSOAM)", "category": "general", "is_public": True},
    {"setting_key": "church_address", "setting_value": "Nairobi, Kenya", "category": "general", "is_public": True},
    {"setting_key": "church_phone", "setting_value": "+254 700 000 000", "category": "general", "is_public": True},
    {"setting_key": "church_email", "setting_value": "admin@tsoam.org", "category": "general", "is_public": True},
    {"setting_key": "currency", "setting_value": "KSH", "category": "finance", "is_public": True},
    {"setting_key": "timezone", "setting_value": "Africa/Nairobi", "category": "general", "is_public": False},
    {"setting_key": "max_login_attempts", "setting_value": "5", "setting_type": "number", "category": "security", "is_public": False},
    {"setting_key": "session_timeout_minutes", "setting_value": "60", "setting_type": "number", "category": "security", "is_public": False},
]

# (table, rows, natural key)
REFERENCE_DATA: list[tuple[str, list[dict[str, object]], str]] = [
    ("districts", DISTRICTS, "district_id"),
    ("modules", MODULES, "module_code"),
    ("system_settings", SYSTEM_SETTINGS, "setting_key"),
]

REQUIRED_TABLES = (
    "users",
    "system_settings",
    "districts",
    "zones",
    "homecells",
    "modules",
    "account_requests",
)

SCHEMA_EXPECTATIONS = [SchemaExpectation(table=t) for t in REQUIRED_TABLES]

_TIMESTAMPS = frozenset({"created_at", "updated_at"})

TABLE_SPECS = [
    TableSpec(
        "users",
        id_strategy=IdStrategyEnum.CLIENT_UUID,
        boolean_columns=frozenset({"can_create_accounts"}),
        datetime_columns=_TIMESTAMPS | {"last_login"},
    ),
    TableSpec("system_settings", boolean_columns=frozenset({"is_public"}), datetime_columns=_TIMESTAMPS),
    TableSpec("districts", datetime_columns=_TIMESTAMPS),
    TableSpec("zones", datetime_columns=_TIMESTAMPS),
    TableSpec("homecells", datetime_columns=_TIMESTAMPS),
    TableSpec(
        "modules",
        datetime_columns=_TIMESTAMPS,
        decimal_columns=frozenset({"price_usd", "price_kes"}),
    ),
    TableSpec(
        "account_requests",
        datetime_columns=_TIMESTAMPS | {"requested_at", "reviewed_at"},
    ),
]


def seed_reference_data(handle: BackendHandle) -> list[SeedReport]:
    """Seed every reference set. Existing rows are never modified."""
    manager = SeedManager(handle)
    return [manager.seed(table, rows, key) for table, rows, key in REFERENCE_DATA]


def main() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL)
    logger.info("Creating initial data")
    selector = BackendSelector.from_settings(settings)
    try:
        seed_reference_data(selector.resolve())
    finally:
        selector.close()
    logger.info("Initial data created")


if __name__ == "__main__":
    main()
