"""Async client for the OpenPact admin gateway."""

from admin_client.client import AdminClient, AdminClientError, AdminConnectionError, Session

__all__ = ["AdminClient", "AdminClientError", "AdminConnectionError", "Session"]
