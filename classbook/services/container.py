from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from classbook.bookings.coordinator import BookingCoordinator
from classbook.core.config import Settings
from classbook.db.session import SessionFactory, build_engine, build_session_factory
from classbook.entitlements.access import AccessResolver
from classbook.entitlements.ledger import EntitlementLedger
from classbook.scheduling.catalog import SessionCatalog


@dataclass(slots=True)
class Services:
    engine: AsyncEngine
    session_factory: SessionFactory
    catalog: SessionCatalog
    ledger: EntitlementLedger
    resolver: AccessResolver
    coordinator: BookingCoordinator


def build_services(settings: Settings, *, engine: AsyncEngine | None = None) -> Services:
    engine = engine or build_engine(settings.database_url)
    session_factory = build_session_factory(engine)
    tz_name = settings.academy_timezone

    catalog = SessionCatalog(
        session_factory,
        tz_name=tz_name,
        default_capacity=settings.default_session_capacity,
    )
    ledger = EntitlementLedger(
        session_factory,
        tz_name=tz_name,
        retry_attempts=settings.booking_retry_attempts,
        retry_base_delay=settings.booking_retry_base_delay,
    )
    resolver = AccessResolver(session_factory, tz_name=tz_name)
    coordinator = BookingCoordinator(
        session_factory,
        catalog,
        ledger,
        resolver,
        tz_name=tz_name,
        retry_attempts=settings.booking_retry_attempts,
        retry_base_delay=settings.booking_retry_base_delay,
    )
    return Services(
        engine=engine,
        session_factory=session_factory,
        catalog=catalog,
        ledger=ledger,
        resolver=resolver,
        coordinator=coordinator,
    )
