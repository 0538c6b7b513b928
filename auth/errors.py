from __future__ import annotations


class AuthChannelError(RuntimeError):
    def __init__(self, message: str = "Token request failed.") -> None:
        super().__init__(message)


class RateLimitedError(AuthChannelError):
    def __init__(self, message: str = "Too many token requests. Please try again later.") -> None:
        super().__init__(message)


class NotEmbeddedError(AuthChannelError):
    def __init__(self, message: str = "Not running inside an embedding host.") -> None:
        super().__init__(message)


class TokenRequestTimeout(AuthChannelError):
    def __init__(self, message: str = "Token request timeout") -> None:
        super().__init__(message)


class HostAuthError(AuthChannelError):
    pass


class AuthChannelClosed(AuthChannelError):
    def __init__(self, message: str = "Auth channel closed.") -> None:
        super().__init__(message)
