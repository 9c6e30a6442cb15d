from typing import Iterator

from fastapi import Request

from .config import Settings
from .storage import Storage


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> Iterator[Storage]:
    """One session per request, closed once the response is produced."""
    session = request.app.state.session_factory()
    try:
        yield Storage(session)
    finally:
        session.close()
