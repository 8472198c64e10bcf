"""Project, place and itinerary models.

The chat assistant only reads these; they are maintained by the project and
itinerary screens.
"""

import uuid
from datetime import date
from typing import List, Optional

from sqlalchemy import Date, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Project(Base):
    """A shared trip plan."""

    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    destination: Mapped[str] = mapped_column(String(200), nullable=False)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Project(name='{self.name}', destination='{self.destination}')>"


class ProjectMember(Base):
    """Collaborator access to a project (the owner is implicit)."""

    __tablename__ = "project_members"
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member"),
    )

    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")


class Place(Base):
    """A place saved to a project."""

    __tablename__ = "places"

    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    name_en: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    category: Mapped[str] = mapped_column(String(30), nullable=False, default="etc")
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    formatted_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    google_place_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    google_maps_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    user_ratings_total: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Place(name='{self.name}', category='{self.category}')>"


class Itinerary(Base):
    __tablename__ = "itineraries"

    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    days: Mapped[List["ItineraryDay"]] = relationship(
        back_populates="itinerary",
        order_by="ItineraryDay.day_number",
        cascade="all, delete-orphan",
    )


class ItineraryDay(Base):
    __tablename__ = "itinerary_days"
    __table_args__ = (
        UniqueConstraint("itinerary_id", "day_number", name="uq_itinerary_day"),
    )

    itinerary_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("itineraries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day_number: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)

    itinerary: Mapped[Itinerary] = relationship(back_populates="days")
    items: Mapped[List["ItineraryItem"]] = relationship(
        back_populates="day",
        order_by="ItineraryItem.order",
        cascade="all, delete-orphan",
    )


class ItineraryItem(Base):
    __tablename__ = "itinerary_items"

    day_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("itinerary_days.id", ondelete="CASCADE"), nullable=False, index=True
    )
    place_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("places.id", ondelete="CASCADE"), nullable=False
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)

    day: Mapped[ItineraryDay] = relationship(back_populates="items")
    place: Mapped[Place] = relationship()
