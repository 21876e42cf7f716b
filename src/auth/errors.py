"""Authentication errors."""


class AuthError(Exception):
    """Invalid credentials, or a call still unauthorized after its refresh retries."""
    pass


class RefreshFailed(AuthError):
    """
    Terminal refresh failure.

    Every caller waiting on the same refresh receives this; the session
    holder must drop its credentials and re-authenticate.
    """
    pass
