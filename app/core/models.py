from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    String,
    TIMESTAMP,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from app.core.database import Base


# =========================
# Country (cached list entry)
# =========================
class Country(Base):
    """
    One country from the remote list.

    The whole list is written at once on refresh, so `stored_at`
    tells when the cache was last filled.
    """

    __tablename__ = "countries"

    alpha3_code = Column(String(3), primary_key=True)

    name = Column(String, nullable=False)
    # casefolded, accent-free name used by the search filter
    search_name = Column(String, nullable=False, index=True)
    population = Column(Integer, nullable=False, default=0)
    flag = Column(String, nullable=True)

    stored_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Relationships
    names = relationship(
        "CountryName",
        back_populates="country",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    details = relationship(
        "CountryDetails",
        back_populates="country",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# =========================
# CountryName (one row per locale)
# =========================
class CountryName(Base):
    __tablename__ = "country_names"
    __table_args__ = (UniqueConstraint("alpha3_code", "locale"),)

    id = Column(Integer, primary_key=True, autoincrement=True)

    alpha3_code = Column(
        String(3),
        ForeignKey("countries.alpha3_code", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    locale = Column(String, nullable=False, index=True)  # "en", "fr", "de"
    display_name = Column(String, nullable=False)
    search_name = Column(String, nullable=False)

    country = relationship("Country", back_populates="names")


# =========================
# CountryDetails (fetched on demand)
# =========================
class CountryDetails(Base):
    """
    Details as they come from the API.

    Neighbors are kept as alpha3 codes and resolved against the
    `countries` table when read.
    """

    __tablename__ = "country_details"

    alpha3_code = Column(
        String(3),
        ForeignKey("countries.alpha3_code", ondelete="CASCADE"),
        primary_key=True,
    )

    capital = Column(String, nullable=False, default="")
    currencies = Column(JSON, nullable=False, default=list)
    borders = Column(JSON, nullable=False, default=list)

    stored_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    country = relationship("Country", back_populates="details")
