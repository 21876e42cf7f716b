"""Admin Gateway - HTTP control surface for the OpenPact administrator."""

from admin.main import AdminState, build_state, create_app

__all__ = ["AdminState", "build_state", "create_app"]
