"""FastAPI dependency injection for the repository."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request

from aqbot.db.engine import get_session
from aqbot.db.repository import Repository


async def get_repo(request: Request) -> AsyncGenerator[Repository, None]:
    """A repository on a per-request session bound to the app's engine."""
    async with get_session(request.app.state.engine) as session:
        yield Repository(session)


RepoDep = Annotated[Repository, Depends(get_repo)]
