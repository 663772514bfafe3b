"""
Test suite for database connection helpers and model constraints.
"""

import pytest
from sqlalchemy import func, inspect, select
from sqlalchemy.exc import IntegrityError

from lifebank.database import connection
from lifebank.database.connection import _convert_database_url_to_async
from lifebank.database.models import InventoryStock, Order
from lifebank.database.models.inventory import BloodType
from lifebank.services.orders.enums import OrderStatus


class TestUrlConversion:
    """Driver selection for database URLs."""

    def test_postgresql_gets_asyncpg(self) -> None:
        """Test plain PostgreSQL URLs switch to the asyncpg driver."""
        assert (
            _convert_database_url_to_async("postgresql://u:p@db/lifebank")
            == "postgresql+asyncpg://u:p@db/lifebank"
        )

    def test_other_urls_unchanged(self) -> None:
        """Test already-async URLs are kept."""
        url = "sqlite+aiosqlite:///lifebank.db"
        assert _convert_database_url_to_async(url) == url


class TestSchema:
    """Tables and constraints created by create_tables."""

    async def test_tables_created(self, engine) -> None:
        """Test every table exists."""
        async with engine.connect() as conn:
            tables = await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_table_names()
            )

        assert {"orders", "order_events", "inventory_stocks"} <= set(tables)

    async def test_stock_unique_per_bank_and_type(self, session) -> None:
        """Test a bank holds one row per blood type."""
        session.add_all(
            [
                InventoryStock(
                    blood_bank_id="BB-001",
                    blood_type=BloodType.O_POSITIVE,
                    available_units=1,
                ),
                InventoryStock(
                    blood_bank_id="BB-001",
                    blood_type=BloodType.O_POSITIVE,
                    available_units=2,
                ),
            ]
        )

        with pytest.raises(IntegrityError):
            await session.flush()
        await session.rollback()

    async def test_stock_never_negative(self, session) -> None:
        """Test the database refuses negative units."""
        session.add(
            InventoryStock(
                blood_bank_id="BB-001",
                blood_type=BloodType.O_POSITIVE,
                available_units=-1,
            )
        )

        with pytest.raises(IntegrityError):
            await session.flush()
        await session.rollback()

    async def test_order_defaults(self, session) -> None:
        """Test a new order starts PENDING at version 1 with timestamps."""
        order = Order(
            hospital_id="HOSP-001",
            blood_bank_id="BB-001",
            blood_type=BloodType.A_NEGATIVE,
            quantity=2,
            delivery_address="1 Hospital Road",
        )
        session.add(order)
        await session.flush()

        assert order.status is OrderStatus.PENDING
        assert order.version == 1
        assert order.created_at is not None
        assert order.to_dict()["blood_type"] == "A-"


class TestGetSession:
    """Transactional session context manager."""

    async def test_commits_on_success(self, session_factory, monkeypatch) -> None:
        """Test work inside the context is committed."""
        monkeypatch.setattr(connection, "_session_factory", session_factory)

        async with connection.get_session() as session:
            session.add(
                InventoryStock(
                    blood_bank_id="BB-001",
                    blood_type=BloodType.O_POSITIVE,
                    available_units=4,
                )
            )

        async with session_factory() as check_session:
            count = await check_session.scalar(
                select(func.count()).select_from(InventoryStock)
            )
        assert count == 1

    async def test_rolls_back_on_error(self, session_factory, monkeypatch) -> None:
        """Test an exception discards the work and propagates."""
        monkeypatch.setattr(connection, "_session_factory", session_factory)

        with pytest.raises(RuntimeError):
            async with connection.get_session() as session:
                session.add(
                    InventoryStock(
                        blood_bank_id="BB-001",
                        blood_type=BloodType.O_POSITIVE,
                        available_units=4,
                    )
                )
                await session.flush()
                raise RuntimeError("request failed")

        async with session_factory() as check_session:
            count = await check_session.scalar(
                select(func.count()).select_from(InventoryStock)
            )
        assert count == 0
