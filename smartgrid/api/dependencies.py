# =======================================================================================
# smartgrid/api/dependencies.py - FastAPI Dependencies
# =======================================================================================
from fastapi import Request
from .state import AppState


def get_state(request: Request) -> AppState:
    """Dependency to get the application state created by create_app()."""
    return request.app.state.smartgrid
