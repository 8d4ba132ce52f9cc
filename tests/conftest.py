import asyncio
from typing import Dict, Iterable, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from app.main import app
from app.core import models, schemas  # noqa: F401  (models registers tables)
from app.core.database import Base
from app.core.lazy_list import LazyList
from app.core.repositories.db import RealCountriesDBRepository, normalize_search
from app.core.services.countries import RealCountriesService
from app.api.endpoints.countries import get_countries_service


# =========================
# Sample data
# =========================
def make_country(code: str, name: str, **translations) -> schemas.Country:
    return schemas.Country(
        name=name,
        translations=translations,
        population=1_000_000,
        flag=f"https://flags.example/{code.lower()}.svg",
        alpha3_code=code,
    )


@pytest.fixture
def sample_countries() -> List[schemas.Country]:
    return [
        make_country("AUT", "Austria", de="Österreich", fr="Autriche"),
        make_country("CIV", "Ivory Coast", fr="Côte d'Ivoire", de="Elfenbeinküste"),
        make_country("DEU", "Germany", de="Deutschland", fr="Allemagne"),
        make_country("FRA", "France", de="Frankreich", fr=None),
    ]


@pytest.fixture
def sample_details() -> schemas.CountryDetailsIntermediate:
    return schemas.CountryDetailsIntermediate(
        capital="Berlin",
        currencies=[schemas.Currency(code="EUR", symbol="€", name="Euro")],
        borders=["AUT", "FRA", "POL"],
    )


# =========================
# Test doubles
# =========================
class MockedWebRepository:
    """Records calls into a shared `actions` list; results are set by the test."""

    def __init__(self, actions: List[str]):
        self.actions = actions
        self.countries: List[schemas.Country] = []
        self.details: Optional[schemas.CountryDetailsIntermediate] = None
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.delay = 0.0

    async def _respond(self, result):
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return result

    async def load_countries(self) -> List[schemas.Country]:
        self.actions.append("web.load_countries")
        return await self._respond(self.countries)

    async def load_country_details(self, country):
        self.actions.append(f"web.load_country_details:{country.alpha3_code}")
        return await self._respond(self.details)


class MockedDBRepository:
    """In-memory stand-in for the database repository."""

    def __init__(self, actions: List[str]):
        self.actions = actions
        self.stored: List[schemas.Country] = []
        self.details: Dict[str, schemas.CountryDetails] = {}
        self.errors: Dict[str, Exception] = {}
        # Details store that "forgets" what it was given
        self.drop_details = False
        # Holds has_loaded_countries() until set
        self.gate: Optional[asyncio.Event] = None

    def _maybe_fail(self, operation: str):
        if operation in self.errors:
            raise self.errors[operation]

    async def has_loaded_countries(self) -> bool:
        self.actions.append("db.has_loaded_countries")
        if self.gate is not None:
            await self.gate.wait()
        self._maybe_fail("has_loaded_countries")
        return bool(self.stored)

    async def store_countries(self, countries: Iterable[schemas.Country]) -> None:
        self.actions.append("db.store_countries")
        self._maybe_fail("store_countries")
        self.stored = list(countries)

    async def countries(self, search: str, locale: str) -> LazyList[schemas.Country]:
        self.actions.append("db.countries")
        self._maybe_fail("countries")
        needle = normalize_search(search)
        matches = [
            c
            for c in self.stored
            if needle in normalize_search(c.localized_name(locale))
            or c.alpha3_code == search.upper()
        ]
        return LazyList(matches, lambda c: c)

    async def country_details(self, country):
        self.actions.append(f"db.country_details:{country.alpha3_code}")
        self._maybe_fail("country_details")
        return self.details.get(country.alpha3_code)

    async def store_country_details(self, details, country) -> None:
        self.actions.append(f"db.store_country_details:{country.alpha3_code}")
        self._maybe_fail("store_country_details")
        if self.drop_details:
            return
        neighbors = [c for c in self.stored if c.alpha3_code in details.borders]
        self.details[country.alpha3_code] = schemas.CountryDetails(
            capital=details.capital,
            currencies=details.currencies,
            neighbors=neighbors,
        )


@pytest.fixture
def actions() -> List[str]:
    return []


@pytest.fixture
def web_repository(actions) -> MockedWebRepository:
    return MockedWebRepository(actions)


@pytest.fixture
def db_repository(actions) -> MockedDBRepository:
    return MockedDBRepository(actions)


@pytest.fixture
def service(web_repository, db_repository) -> RealCountriesService:
    # No hold-back delay in tests
    return RealCountriesService(web_repository, db_repository, refresh_floor=0)


# =========================
# Real database (temporary SQLite file per test)
# =========================
@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path):
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'countries_test.db'}", echo=False
    )
    async with test_engine.begin() as conn:
        # Create all tables
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    await test_engine.dispose()


@pytest.fixture
def sql_repository(session_factory) -> RealCountriesDBRepository:
    return RealCountriesDBRepository(session_factory)


# =========================
# HTTP client
# =========================
@pytest_asyncio.fixture(scope="function")
async def client(service):
    app.dependency_overrides[get_countries_service] = lambda: service

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
