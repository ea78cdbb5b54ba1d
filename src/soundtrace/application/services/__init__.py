"""Application services - token management, sync, document generation and answers."""

from soundtrace.application.services.account_service import AccountService
from soundtrace.application.services.analytics_service import AnalyticsService
from soundtrace.application.services.answer_service import AnswerService
from soundtrace.application.services.dimension_service import DimensionService
from soundtrace.application.services.document_generation_service import (
    DocumentGenerationService,
)
from soundtrace.application.services.listening_sync_service import ListeningSyncService
from soundtrace.application.services.music_gateway import SpotifyGateway
from soundtrace.application.services.token_manager import TokenManager

__all__ = [
    "AccountService",
    "AnalyticsService",
    "AnswerService",
    "DimensionService",
    "DocumentGenerationService",
    "ListeningSyncService",
    "SpotifyGateway",
    "TokenManager",
]
