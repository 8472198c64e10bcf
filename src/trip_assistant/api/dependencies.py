"""Request-scoped accessors for the services wired up in the app lifespan."""

from fastapi import Request

from ..chat.send_message import SendMessageUseCase
from ..repositories.chat import ChatRepository
from ..repositories.projects import ProjectRepository
from ..services.place_validation import PlaceValidationService
from ..services.usage_limit import UsageLimitService


def get_chat_repository(request: Request) -> ChatRepository:
    return request.app.state.chat_repository


def get_project_repository(request: Request) -> ProjectRepository:
    return request.app.state.project_repository


def get_usage_service(request: Request) -> UsageLimitService:
    return request.app.state.usage_service


def get_place_validation(request: Request) -> PlaceValidationService:
    return request.app.state.place_validation


def get_send_message(request: Request) -> SendMessageUseCase:
    return request.app.state.send_message
