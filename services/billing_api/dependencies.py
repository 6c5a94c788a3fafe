"""FastAPI dependencies shared by the billing routes."""
from __future__ import annotations

from fastapi import Request


async def get_db(request: Request):
    """Get the Motor database handle from app state."""
    return request.app.state.db
