import pytest
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.core.errors import NetworkError, StorageError
from app.core.services.countries import StubCountriesService
from app.api.endpoints.countries import get_countries_service


@pytest.mark.asyncio
async def test_root(client: AsyncClient):
    response = await client.get("/")
    assert response.status_code == 200
    assert "message" in response.json()


@pytest.mark.asyncio
async def test_list_countries_downloads_once(
    client: AsyncClient, web_repository, sample_countries, actions
):
    """First list call fills the cache, the second one is served from it"""
    web_repository.countries = sample_countries

    first = await client.get("/countries", params={"locale": "de"})
    second = await client.get("/countries", params={"search": "frank", "locale": "de"})

    assert first.status_code == 200
    data = first.json()
    assert [c["alpha3Code"] for c in data] == ["AUT", "CIV", "DEU", "FRA"]
    assert data[0]["display_name"] == "Österreich"

    assert second.status_code == 200
    assert [c["display_name"] for c in second.json()] == ["Frankreich"]
    assert actions.count("web.load_countries") == 1


@pytest.mark.asyncio
async def test_list_countries_network_failure_is_502(client: AsyncClient, web_repository):
    web_repository.error = NetworkError("offline")

    response = await client.get("/countries")

    assert response.status_code == 502


@pytest.mark.asyncio
async def test_list_countries_storage_failure_is_500(
    client: AsyncClient, db_repository
):
    db_repository.errors["has_loaded_countries"] = StorageError("locked")

    response = await client.get("/countries")

    assert response.status_code == 500


@pytest.mark.asyncio
async def test_country_details(
    client: AsyncClient, web_repository, db_repository, sample_countries, sample_details
):
    db_repository.stored = sample_countries
    web_repository.details = sample_details

    response = await client.get("/countries/deu", params={"locale": "fr"})

    assert response.status_code == 200
    data = response.json()
    assert data["capital"] == "Berlin"
    assert data["currencies"][0]["code"] == "EUR"
    assert [n["display_name"] for n in data["neighbors"]] == ["Autriche", "France"]


@pytest.mark.asyncio
async def test_country_details_unknown_country_is_404(
    client: AsyncClient, db_repository, sample_countries, actions
):
    db_repository.stored = sample_countries

    response = await client.get("/countries/XYZ")

    assert response.status_code == 404
    assert not any(a.startswith("web.load_country_details") for a in actions)


@pytest.mark.asyncio
async def test_refresh_endpoint(client: AsyncClient, web_repository, db_repository, sample_countries, actions):
    web_repository.countries = sample_countries
    db_repository.stored = sample_countries[:1]

    skipped = await client.post("/countries/refresh")
    forced = await client.post("/countries/refresh", params={"force": "true"})

    assert skipped.status_code == 200
    assert forced.json() == {"status": "ok", "forced": True}
    assert actions.count("web.load_countries") == 1
    assert db_repository.stored == sample_countries


@pytest.mark.asyncio
async def test_refresh_storage_failure_is_500(
    client: AsyncClient, web_repository, db_repository, sample_countries
):
    """Refresh that can't be written to the database returns 500"""
    web_repository.countries = sample_countries
    db_repository.errors["store_countries"] = StorageError("disk full")

    response = await client.post("/countries/refresh")

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to refresh countries"


@pytest.mark.asyncio
async def test_stub_service_reports_unavailable():
    app.dependency_overrides[get_countries_service] = StubCountriesService

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        listing = await ac.get("/countries")
        refresh = await ac.post("/countries/refresh")

    app.dependency_overrides.clear()

    assert listing.status_code == 503
    assert refresh.status_code == 200
