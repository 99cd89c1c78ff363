class TransportFailure(Exception):
    """Raised when a remote gateway call fails (network, HTTP status or bad body)."""

    def __init__(self, endpoint: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{endpoint}: {message}")
        self.endpoint = endpoint
        self.status_code = status_code


class UnknownCategoryError(ValueError):
    """Raised when a string does not name a registered cache category."""


__all__ = [
    "TransportFailure",
    "UnknownCategoryError",
]
