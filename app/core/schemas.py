from typing import Optional, List, Dict

from pydantic import BaseModel, ConfigDict, Field


def short_locale(locale: str) -> str:
    """
    Reduce a locale identifier to the language part used for stored names.

    Example:
        short_locale("fr_CA") -> "fr"
        short_locale("de-AT") -> "de"
    """
    return locale.replace("-", "_").split("_", 1)[0].lower() or "en"


# =========================
# COUNTRY
# =========================
class Country(BaseModel):
    name: str
    translations: Dict[str, Optional[str]] = Field(default_factory=dict)
    population: int = 0
    flag: Optional[str] = None
    alpha3_code: str = Field(alias="alpha3Code", min_length=3, max_length=3)

    # API payloads use camelCase, our code uses snake_case
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    def localized_name(self, locale: str) -> str:
        return self.translations.get(short_locale(locale)) or self.name


class CountryResponse(Country):
    display_name: str

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @classmethod
    def for_locale(cls, country: Country, locale: str) -> "CountryResponse":
        return cls(
            **country.model_dump(),
            display_name=country.localized_name(locale),
        )


# =========================
# DETAILS
# =========================
class Currency(BaseModel):
    code: str
    symbol: Optional[str] = None
    name: str

    model_config = ConfigDict(frozen=True, extra="ignore")


class CountryDetailsIntermediate(BaseModel):
    """Details in the shape the API sends them: neighbors are codes."""

    capital: str = ""
    currencies: List[Currency] = Field(default_factory=list)
    borders: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="ignore")


class CountryDetails(BaseModel):
    capital: str
    currencies: List[Currency]
    neighbors: List[Country]

    model_config = ConfigDict(frozen=True)


class CountryDetailsResponse(BaseModel):
    capital: str
    currencies: List[Currency]
    neighbors: List[CountryResponse]


class RefreshResponse(BaseModel):
    status: str = "ok"
    forced: bool = False
