# app/core/services/countries.py
"""
COUNTRIES SERVICE - Orchestration

Purpose: decide, for every request, whether the local database can answer
or the remote API has to be asked first, and report progress through a
`LoadableSubject`.

List pipeline:
    set_loading -> has_loaded_countries? -> (no) fetch + store -> query -> Loaded / Failed

Details pipeline:
    set_loading -> country_details? -> (none) fetch + store + read back -> Loaded / Failed

Every pipeline runs as its own asyncio task. The task's token goes into the
caller's CancelBag; once the bag is cancelled nothing more is published.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Hashable, Optional, Protocol, TypeVar

from app.core import schemas
from app.core.cancel_bag import CancelBag, CancellationToken
from app.core.errors import StorageError
from app.core.lazy_list import LazyList
from app.core.loadable import Failed, Loaded, LoadableSubject
from app.core.repositories.db import CountriesDBRepository
from app.core.repositories.web import CountriesWebRepository
from app.core.timing import ensure_time_span

T = TypeVar("T")

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_FLOOR = 0.5
_COUNTRIES_LIST_KEY = "countries"


class CountriesService(Protocol):
    async def refresh_countries_list(self, force: bool = False) -> None: ...

    def load_countries(
        self,
        countries: LoadableSubject[LazyList[schemas.Country]],
        search: str,
        locale: str,
        cancel_bag: Optional[CancelBag] = None,
    ) -> Optional[asyncio.Task]: ...

    def load_country_details(
        self,
        details: LoadableSubject[schemas.CountryDetails],
        country: schemas.Country,
        cancel_bag: Optional[CancelBag] = None,
    ) -> Optional[asyncio.Task]: ...


@dataclass
class _InFlight:
    task: asyncio.Task
    waiters: int = 0


class RealCountriesService:
    """
    Production implementation of `CountriesService`.

    Args:
        web_repository: Remote source of countries.
        db_repository: Local cache.
        refresh_floor: Minimum duration of any network refresh, in seconds.
            Pass 0 in tests.
    """

    def __init__(
        self,
        web_repository: CountriesWebRepository,
        db_repository: CountriesDBRepository,
        refresh_floor: float = DEFAULT_REFRESH_FLOOR,
    ):
        self.web_repository = web_repository
        self.db_repository = db_repository
        self.refresh_floor = refresh_floor
        self._in_flight: Dict[Hashable, _InFlight] = {}

    # ------------------------------------------------------------------
    # Countries list
    # ------------------------------------------------------------------

    def load_countries(
        self,
        countries: LoadableSubject[LazyList[schemas.Country]],
        search: str,
        locale: str,
        cancel_bag: Optional[CancelBag] = None,
    ) -> asyncio.Task:
        async def pipeline() -> LazyList[schemas.Country]:
            await self.refresh_countries_list()
            return await self.db_repository.countries(search=search, locale=locale)

        logger.info(f"Loading countries (search={search!r}, locale={locale!r})")
        return self._run(countries, pipeline, cancel_bag)

    async def refresh_countries_list(self, force: bool = False) -> None:
        """
        Make sure the local database holds the countries list.

        Without `force` the API is only called when nothing is stored yet.
        With `force` the list is always downloaded again and overwritten.
        """
        if not force and await self.db_repository.has_loaded_countries():
            logger.debug("Countries already stored, skipping refresh")
            return
        await self._coalesced(_COUNTRIES_LIST_KEY, self._load_and_store_countries)

    async def _load_and_store_countries(self) -> None:
        logger.info("Refreshing countries list from the API")
        countries = await ensure_time_span(
            self.web_repository.load_countries(), self.refresh_floor
        )
        await self.db_repository.store_countries(countries)

    # ------------------------------------------------------------------
    # Country details
    # ------------------------------------------------------------------

    def load_country_details(
        self,
        details: LoadableSubject[schemas.CountryDetails],
        country: schemas.Country,
        cancel_bag: Optional[CancelBag] = None,
    ) -> asyncio.Task:
        async def pipeline() -> schemas.CountryDetails:
            cached = await self.db_repository.country_details(country)
            if cached is not None:
                logger.debug(f"Details for {country.alpha3_code} served from cache")
                return cached
            return await self._coalesced(
                ("details", country.alpha3_code),
                lambda: self._load_and_store_country_details(country),
            )

        logger.info(f"Loading details for {country.alpha3_code}")
        return self._run(details, pipeline, cancel_bag)

    async def _load_and_store_country_details(
        self, country: schemas.Country
    ) -> schemas.CountryDetails:
        intermediate = await ensure_time_span(
            self.web_repository.load_country_details(country), self.refresh_floor
        )
        await self.db_repository.store_country_details(intermediate, country)

        details = await self.db_repository.country_details(country)
        if details is None:
            # Store succeeded but the read back came up empty
            raise StorageError(
                f"Details for {country.alpha3_code} missing right after storing them"
            )
        return details

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _run(
        self,
        subject: LoadableSubject[T],
        pipeline: Callable[[], Awaitable[T]],
        cancel_bag: Optional[CancelBag],
    ) -> asyncio.Task:
        """Mark `subject` as loading and start `pipeline` as a task owned by `cancel_bag`."""
        cancel_bag = cancel_bag if cancel_bag is not None else CancelBag()
        subject.set_loading(cancel_bag)

        token = CancellationToken()
        task = asyncio.get_running_loop().create_task(
            self._publish(subject, pipeline, token)
        )
        token.bind(task)
        task.add_done_callback(lambda _: cancel_bag.discard(token))
        cancel_bag.store(token)
        return task

    async def _publish(
        self,
        subject: LoadableSubject[T],
        pipeline: Callable[[], Awaitable[T]],
        token: CancellationToken,
    ) -> None:
        try:
            value = await pipeline()
        except asyncio.CancelledError:
            logger.debug("Pipeline cancelled, nothing published")
            raise
        except Exception as error:
            logger.warning(f"Pipeline failed: {error!r}")
            result = Failed(error)
        else:
            result = Loaded(value)

        # Completion may race with a cancel coming from another thread
        if token.is_cancelled:
            logger.debug("Pipeline finished after cancellation, result dropped")
            return
        subject.value = result

    async def _coalesced(self, key: Hashable, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Share one running `operation` between all callers using the same key.

        Each caller waits through `asyncio.shield`, so one caller being
        cancelled doesn't break the others. When the last waiter goes away
        the shared task is cancelled too and dropped from `_in_flight`.
        """
        entry = self._in_flight.get(key)
        if entry is None or entry.task.done():
            task = asyncio.ensure_future(operation())
            entry = _InFlight(task)
            self._in_flight[key] = entry
            task.add_done_callback(lambda t: self._forget(key, entry))
        else:
            logger.debug(f"Joining in-flight request {key!r}")

        entry.waiters += 1
        try:
            return await asyncio.shield(entry.task)
        except asyncio.CancelledError:
            if entry.waiters == 1 and not entry.task.done():
                entry.task.cancel()
                # Later callers must start a fresh task, not join this one
                if self._in_flight.get(key) is entry:
                    del self._in_flight[key]
            raise
        finally:
            entry.waiters -= 1

    def _forget(self, key: Hashable, entry: _InFlight) -> None:
        if self._in_flight.get(key) is entry:
            del self._in_flight[key]
        # Every waiter already received the outcome
        if not entry.task.cancelled():
            entry.task.exception()


class StubCountriesService:
    """No-op service for previews and consumer tests: nothing is ever loaded."""

    async def refresh_countries_list(self, force: bool = False) -> None:
        return None

    def load_countries(
        self,
        countries: LoadableSubject[LazyList[schemas.Country]],
        search: str,
        locale: str,
        cancel_bag: Optional[CancelBag] = None,
    ) -> None:
        return None

    def load_country_details(
        self,
        details: LoadableSubject[schemas.CountryDetails],
        country: schemas.Country,
        cancel_bag: Optional[CancelBag] = None,
    ) -> None:
        return None
