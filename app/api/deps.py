from fastapi import Request

from app.db.forbidden_word_repository import ForbiddenWordRepository
from app.services.chat_hub import ChatHub


def get_chat_hub(request: Request) -> ChatHub:
    return request.app.state.chat_hub


def get_forbidden_words(request: Request) -> ForbiddenWordRepository:
    return request.app.state.forbidden_words
