from __future__ import annotations

from decimal import Decimal

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import CreditPackage, PaymentMethod, PaymentSetting


DEFAULT_PACKAGES = [
    {"slug": "PACK_5", "name": "Starter Pack", "credits": 5, "price": Decimal("15"), "savings_percent": None, "is_popular": False, "sort_order": 0},
    {"slug": "PACK_7", "name": "Basic Pack", "credits": 7, "price": Decimal("17"), "savings_percent": 19, "is_popular": False, "sort_order": 1},
    {"slug": "PACK_11", "name": "Value Pack", "credits": 11, "price": Decimal("20"), "savings_percent": 39, "is_popular": True, "sort_order": 2},
    {"slug": "PACK_17", "name": "Premium Pack", "credits": 17, "price": Decimal("25"), "savings_percent": 51, "is_popular": False, "sort_order": 3},
    {"slug": "PACK_23", "name": "Ultimate Pack", "credits": 23, "price": Decimal("30"), "savings_percent": 57, "is_popular": False, "sort_order": 4},
]

DEFAULT_PAYMENT_SETTINGS = [
    {
        "method": PaymentMethod.bank_transfer.value,
        "label": "Bank Transfer",
        "instructions": "Transfer the exact amount and include your request number in the transfer reference. "
                        "Processing time: 1-2 business days after payment confirmation.",
        "sort_order": 0,
    },
    {
        "method": PaymentMethod.jazzcash.value,
        "label": "JazzCash",
        "instructions": "Send the payment to our JazzCash account and include your request number in the reference.",
        "sort_order": 1,
    },
    {
        "method": PaymentMethod.easypaisa.value,
        "label": "EasyPaisa",
        "instructions": "Send the payment to our EasyPaisa account and include your request number in the reference.",
        "sort_order": 2,
    },
]


async def seed_default_catalog(session: AsyncSession) -> None:
    """Insert the stock credit packages and payment methods that are missing. Idempotent."""
    existing_slugs = set(
        await session.scalars(
            select(CreditPackage.slug).where(CreditPackage.slug.in_([p["slug"] for p in DEFAULT_PACKAGES]))
        )
    )
    for package in DEFAULT_PACKAGES:
        if package["slug"] in existing_slugs:
            continue
        session.add(CreditPackage(bonus_credits=0, is_active=True, **package))
        logger.info(f"🌱 Credit package seeded: {package['name']}")

    existing_methods = set(await session.scalars(select(PaymentSetting.method)))
    for setting in DEFAULT_PAYMENT_SETTINGS:
        if setting["method"] in existing_methods:
            continue
        session.add(PaymentSetting(is_active=True, **setting))
        logger.info(f"🌱 Payment method seeded: {setting['label']}")
    await session.flush()
