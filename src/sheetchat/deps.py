"""
SheetChat - Dependency Injection.

FastAPI dependencies for the per-app AppContext.
"""

from fastapi import Request

from sheetchat.context import AppContext


def get_context(request: Request) -> AppContext:
    """The AppContext of the app serving this request."""
    return request.app.state.context
