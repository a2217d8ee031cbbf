"""HTTP transport for the order workflow."""

from src.workflow.api.routes import register_error_handlers, router

__all__ = [
    "register_error_handlers",
    "router",
]
