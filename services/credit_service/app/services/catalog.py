from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.unit import atomic
from ..errors import PackageNotFound, PaymentMethodUnavailable
from ..models import CreditPackage, PaymentSetting


@dataclass(frozen=True)
class TopUpOptions:
    packages: list[CreditPackage]
    payment_methods: list[PaymentSetting]


class PackageCatalog:
    """Read-only view over credit packages and the payment methods members may use."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_package(self, session: AsyncSession, package_id: int) -> CreditPackage:
        package = await session.get(CreditPackage, package_id)
        if package is None or not package.is_active:
            raise PackageNotFound(package_id)
        return package

    async def get_payment_setting(self, session: AsyncSession, method: str) -> PaymentSetting:
        setting = await session.scalar(select(PaymentSetting).where(PaymentSetting.method == method))
        if setting is None or not setting.is_active:
            raise PaymentMethodUnavailable(method)
        return setting

    async def options(self) -> TopUpOptions:
        async with atomic(self._session_factory, "topup_options") as session:
            packages = await session.scalars(
                select(CreditPackage)
                .where(CreditPackage.is_active.is_(True))
                .order_by(CreditPackage.sort_order, CreditPackage.id)
            )
            methods = await session.scalars(
                select(PaymentSetting)
                .where(PaymentSetting.is_active.is_(True))
                .order_by(PaymentSetting.sort_order, PaymentSetting.id)
            )
            return TopUpOptions(packages=list(packages), payment_methods=list(methods))
