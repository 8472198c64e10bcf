"""Database models for Trip Assistant."""

from .base import Base
from .project import Project, ProjectMember, Place, Itinerary, ItineraryDay, ItineraryItem
from .chat import ChatSession, ChatMessage, ChatUsage

__all__ = [
    "Base",
    "Project",
    "ProjectMember",
    "Place",
    "Itinerary",
    "ItineraryDay",
    "ItineraryItem",
    "ChatSession",
    "ChatMessage",
    "ChatUsage",
]
