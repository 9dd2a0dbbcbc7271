"""Pytest configuration and fixtures."""

from datetime import date, timedelta
from pathlib import Path

import pytest

from dts.config import Settings
from dts.domain.models import Actor, Campaign, Receiver, Role
from dts.services import LedgerServices

ADMIN = Actor(id=1, username="admin1", role=Role.ADMIN)
DONOR = Actor(id=2, username="donor1", role=Role.DONOR)
OPERATOR = Actor(id=3, username="operator1", role=Role.OPERATOR)
ACCOUNTANT = Actor(id=4, username="accountant1", role=Role.ACCOUNTANT)
AUDITOR = Actor(id=5, username="auditor1", role=Role.AUDITOR)
OTHER_DONOR = Actor(id=6, username="donor2", role=Role.DONOR)


def make_settings(db_path: Path, **overrides) -> Settings:
    """Settings pointing at a throwaway SQLite file, ignoring any .env file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        **overrides,
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path / "ledger.db")


@pytest.fixture
async def ledger(settings: Settings):
    """Started ledger services over a fresh database."""
    services = LedgerServices.from_settings(settings)
    await services.start()
    yield services
    await services.stop()


@pytest.fixture
def engine(ledger: LedgerServices):
    return ledger.engine


@pytest.fixture
def queries(ledger: LedgerServices):
    return ledger.queries


@pytest.fixture
async def receivers(engine) -> list[Receiver]:
    return [
        await engine.create_receiver(ADMIN, "Community Hospital", "Hospital", "12345678"),
        await engine.create_receiver(ADMIN, "Local School District", "Education", "87654321"),
    ]


@pytest.fixture
async def campaign(engine, receivers) -> Campaign:
    """An open campaign with two receivers registered."""
    return await engine.create_campaign(
        ADMIN,
        title="School Lunch Program",
        description="Providing daily meals for children.",
        end_date=date.today() + timedelta(days=365),
    )
