import logging
from typing import Annotated, List, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.core import schemas
from app.core.cancel_bag import CancelBag
from app.core.errors import DecodingError, NetworkError, StorageError
from app.core.lazy_list import LazyList
from app.core.loadable import Failed, Loaded, LoadableSubject
from app.core.services.countries import CountriesService

T = TypeVar("T")

router = APIRouter(prefix="/countries", tags=["Countries"])


# The service is built once in the app lifespan, tests override this
def get_countries_service(request: Request) -> CountriesService:
    return request.app.state.countries_service


service_dep = Annotated[CountriesService, Depends(get_countries_service)]


async def resolve(subject: LoadableSubject[T], task) -> T:
    """Wait for a pipeline and turn its terminal state into a value or an HTTP error."""
    if task is not None:
        await task

    state = subject.value
    if isinstance(state, Loaded):
        return state.value

    if isinstance(state, Failed):
        error = state.error
        logging.error(f"Countries request failed: {error!r}")
        if isinstance(error, (NetworkError, DecodingError)):
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Countries API is unavailable",
            )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load countries",
        )

    # Nothing was loaded at all (stub service)
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Countries are not available",
    )


# Countries list
@router.get("", response_model=List[schemas.CountryResponse])
async def list_countries(service: service_dep, search: str = "", locale: str = "en"):
    subject: LoadableSubject[LazyList[schemas.Country]] = LoadableSubject()

    # Leaving the block (or the client going away) cancels the pipeline
    with CancelBag() as bag:
        task = service.load_countries(subject, search=search, locale=locale, cancel_bag=bag)
        countries = await resolve(subject, task)

    return [schemas.CountryResponse.for_locale(c, locale) for c in countries]


# Force or ensure a refresh without listing anything
@router.post("/refresh", response_model=schemas.RefreshResponse)
async def refresh_countries(service: service_dep, force: bool = False):
    try:
        await service.refresh_countries_list(force=force)
    except (NetworkError, DecodingError) as error:
        logging.error(f"Refresh failed: {error!r}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Countries API is unavailable",
        )
    except StorageError as error:
        logging.error(f"Refresh could not be stored: {error!r}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to refresh countries",
        )
    return schemas.RefreshResponse(forced=force)


# Country details
@router.get("/{alpha3_code}", response_model=schemas.CountryDetailsResponse)
async def get_country_details(service: service_dep, alpha3_code: str, locale: str = "en"):
    code = alpha3_code.upper()

    with CancelBag() as bag:
        # Find the country itself first, searching by code matches it exactly
        matches: LoadableSubject[LazyList[schemas.Country]] = LoadableSubject()
        task = service.load_countries(matches, search=code, locale=locale, cancel_bag=bag)
        countries = await resolve(matches, task)

        country = next((c for c in countries if c.alpha3_code == code), None)
        if country is None:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Country not found")

        details: LoadableSubject[schemas.CountryDetails] = LoadableSubject()
        task = service.load_country_details(details, country, cancel_bag=bag)
        loaded = await resolve(details, task)

    return schemas.CountryDetailsResponse(
        capital=loaded.capital,
        currencies=loaded.currencies,
        neighbors=[schemas.CountryResponse.for_locale(n, locale) for n in loaded.neighbors],
    )
