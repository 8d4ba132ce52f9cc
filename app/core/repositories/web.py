# app/core/repositories/web.py
"""
WEB REPOSITORY - Talk to the remote countries API

Purpose:
    1. Download the full countries list
    2. Download details for one country
    3. Turn transport / HTTP / parsing problems into our error kinds

Data Flow:
    GET /all           -> List[Country]
    GET /alpha/{code}  -> CountryDetailsIntermediate
"""

import logging
from typing import Any, List, Optional, Protocol

import httpx
from pydantic import TypeAdapter, ValidationError

from app.core import schemas
from app.core.config import Settings, settings as default_settings
from app.core.errors import DecodingError, NetworkError

logger = logging.getLogger(__name__)

_COUNTRY_LIST = TypeAdapter(List[schemas.Country])


class CountriesWebRepository(Protocol):
    async def load_countries(self) -> List[schemas.Country]: ...

    async def load_country_details(
        self, country: schemas.Country
    ) -> schemas.CountryDetailsIntermediate: ...


def build_async_client(settings: Optional[Settings] = None) -> httpx.AsyncClient:
    """Shared client with the configured base URL and timeout."""
    settings = settings or default_settings
    return httpx.AsyncClient(
        base_url=settings.COUNTRIES_API_URL.rstrip("/") + "/",
        timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS),
        headers={"Accept": "application/json"},
        follow_redirects=True,
    )


class RealCountriesWebRepository:
    """
    httpx implementation of `CountriesWebRepository`.

    The client is owned by the caller (the app lifespan), so several
    repositories can share one connection pool.
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def load_countries(self) -> List[schemas.Country]:
        data = await self._get_json("all")
        try:
            countries = _COUNTRY_LIST.validate_python(data)
        except ValidationError as error:
            raise DecodingError(f"Unexpected countries payload: {error}") from error

        logger.info(f"Fetched {len(countries)} countries")
        return countries

    async def load_country_details(
        self, country: schemas.Country
    ) -> schemas.CountryDetailsIntermediate:
        data = await self._get_json(f"alpha/{country.alpha3_code}")

        # Handle different API response formats
        if isinstance(data, list):
            # Search style endpoints wrap the match: [{...}]
            if not data:
                raise DecodingError(f"No details returned for {country.alpha3_code}")
            data = data[0]

        try:
            return schemas.CountryDetailsIntermediate.model_validate(data)
        except ValidationError as error:
            raise DecodingError(f"Unexpected details payload: {error}") from error

    async def _get_json(self, path: str) -> Any:
        logger.debug(f"GET {self.client.base_url}{path}")
        try:
            response = await self.client.get(path)
            response.raise_for_status()
        except httpx.HTTPStatusError as error:
            status_code = error.response.status_code
            raise NetworkError(
                f"Countries API returned {status_code} for {path}",
                status_code=status_code,
            ) from error
        except httpx.HTTPError as error:
            raise NetworkError(f"Countries API request failed: {error}") from error

        try:
            return response.json()
        except ValueError as error:
            raise DecodingError(f"Countries API sent invalid JSON for {path}") from error
