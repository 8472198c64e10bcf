"""Persistence access for the chat pipeline.

Repositories open a short-lived session per call through ``session_factory``
so they can be used from inside a streaming response, after the request
scope has ended.
"""

from .chat import ChatRepository
from .projects import ProjectAccess, ProjectRepository
from .usage import SqlUsageRepository

__all__ = ["ChatRepository", "ProjectAccess", "ProjectRepository", "SqlUsageRepository"]
