# app/core/repositories/db.py
"""
DB REPOSITORY - Local cache of countries

Purpose:
    1. Tell whether the countries list was downloaded already
    2. Store the list (with one localized name per locale)
    3. Search the list by localized name or alpha3 code
    4. Store and read country details, resolving neighbors from the list

Every method opens its own session, so concurrent pipelines never share
one. Writes replace existing rows (last write wins).
"""

import logging
import unicodedata
from typing import Iterable, List, Optional, Protocol

from sqlalchemy import select, delete, func, and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.core import models, schemas
from app.core.errors import StorageError
from app.core.lazy_list import LazyList

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en"


class CountriesDBRepository(Protocol):
    async def has_loaded_countries(self) -> bool: ...

    async def store_countries(self, countries: Iterable[schemas.Country]) -> None: ...

    async def countries(self, search: str, locale: str) -> LazyList[schemas.Country]: ...

    async def country_details(
        self, country: schemas.Country
    ) -> Optional[schemas.CountryDetails]: ...

    async def store_country_details(
        self, details: schemas.CountryDetailsIntermediate, country: schemas.Country
    ) -> None: ...


def normalize_search(text: str) -> str:
    """
    Casefold and strip accents, so "cote" finds "Côte d'Ivoire".

    Example:
        normalize_search("Österreich") -> "osterreich"
    """
    decomposed = unicodedata.normalize("NFKD", text.casefold())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).strip()


def to_country_schema(row: models.Country) -> schemas.Country:
    translations = {
        name.locale: name.display_name
        for name in row.names
        if name.locale != DEFAULT_LOCALE
    }
    return schemas.Country(
        name=row.name,
        translations=translations,
        population=row.population,
        flag=row.flag,
        alpha3_code=row.alpha3_code,
    )


def _name_rows(country: schemas.Country) -> List[models.CountryName]:
    names = {DEFAULT_LOCALE: country.name}
    for locale, display_name in country.translations.items():
        if display_name:
            names[schemas.short_locale(locale)] = display_name

    return [
        models.CountryName(
            alpha3_code=country.alpha3_code,
            locale=locale,
            display_name=display_name,
            search_name=normalize_search(display_name),
        )
        for locale, display_name in names.items()
    ]


class RealCountriesDBRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def has_loaded_countries(self) -> bool:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(func.count()).select_from(models.Country)
                )
                return (result.scalar() or 0) > 0
        except SQLAlchemyError as error:
            raise StorageError(f"Could not count stored countries: {error}") from error

    async def store_countries(self, countries: Iterable[schemas.Country]) -> None:
        countries = list(countries)
        codes = [country.alpha3_code for country in countries]

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    # Names are rebuilt from scratch, the row itself is merged
                    await session.execute(
                        delete(models.CountryName).where(
                            models.CountryName.alpha3_code.in_(codes)
                        )
                    )
                    for country in countries:
                        await session.merge(
                            models.Country(
                                alpha3_code=country.alpha3_code,
                                name=country.name,
                                search_name=normalize_search(country.name),
                                population=country.population,
                                flag=country.flag,
                            )
                        )
                        session.add_all(_name_rows(country))
        except SQLAlchemyError as error:
            raise StorageError(f"Could not store countries: {error}") from error

        logger.info(f"Stored {len(countries)} countries")

    async def countries(self, search: str, locale: str) -> LazyList[schemas.Country]:
        """
        Countries for `locale`, ordered by their localized name.

        Matches when the localized name contains `search` (ignoring case and
        accents) or when `search` is exactly the alpha3 code. Countries
        without a name in `locale` fall back to their English name.
        """
        locale = schemas.short_locale(locale)
        display_name = func.coalesce(models.CountryName.display_name, models.Country.name)

        query = (
            select(models.Country)
            .outerjoin(
                models.CountryName,
                and_(
                    models.CountryName.alpha3_code == models.Country.alpha3_code,
                    models.CountryName.locale == locale,
                ),
            )
            .options(selectinload(models.Country.names))
            .order_by(display_name)
        )

        needle = normalize_search(search)
        if needle:
            search_name = func.coalesce(
                models.CountryName.search_name, models.Country.search_name
            )
            query = query.where(
                or_(
                    search_name.contains(needle, autoescape=True),
                    models.Country.alpha3_code == search.strip().upper(),
                )
            )

        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                rows = result.scalars().unique().all()
        except SQLAlchemyError as error:
            raise StorageError(f"Could not query countries: {error}") from error

        return LazyList(rows, to_country_schema)

    async def country_details(
        self, country: schemas.Country
    ) -> Optional[schemas.CountryDetails]:
        try:
            async with self.session_factory() as session:
                record = await session.get(models.CountryDetails, country.alpha3_code)
                if record is None:
                    return None

                neighbors: List[schemas.Country] = []
                if record.borders:
                    result = await session.execute(
                        select(models.Country)
                        .where(models.Country.alpha3_code.in_(record.borders))
                        .options(selectinload(models.Country.names))
                    )
                    by_code = {row.alpha3_code: row for row in result.scalars().all()}
                    # Keep the API's border order, skip codes we don't know
                    neighbors = [
                        to_country_schema(by_code[code])
                        for code in record.borders
                        if code in by_code
                    ]
        except SQLAlchemyError as error:
            raise StorageError(
                f"Could not read details for {country.alpha3_code}: {error}"
            ) from error

        return schemas.CountryDetails(
            capital=record.capital,
            currencies=[schemas.Currency.model_validate(c) for c in record.currencies],
            neighbors=neighbors,
        )

    async def store_country_details(
        self, details: schemas.CountryDetailsIntermediate, country: schemas.Country
    ) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.merge(
                        models.CountryDetails(
                            alpha3_code=country.alpha3_code,
                            capital=details.capital,
                            currencies=[c.model_dump() for c in details.currencies],
                            borders=list(details.borders),
                        )
                    )
        except SQLAlchemyError as error:
            raise StorageError(
                f"Could not store details for {country.alpha3_code}: {error}"
            ) from error

        logger.info(f"Stored details for {country.alpha3_code}")
