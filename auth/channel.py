"""Token request/response correlation over an untrusted message bus.

The widget never holds credentials of its own. It asks the host for a bearer
token with a nonce-tagged ``REQUEST_TOKEN`` (or ``REFRESH_TOKEN``) message and
waits for an ``AUTH_TOKEN`` carrying the same nonce. Inbound traffic passes
through the origin allow-list, the per-origin rate limiter, the payload
schema and the nonce store, in that order, before anything is trusted.

All state lives on one :class:`AuthChannel` and is only touched from the
event loop; every mutation is a single synchronous step.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping, MutableMapping

from widgetbridge.bus import InboundMessage, MessageBus
from widgetbridge.constants import LOGGER, TOKEN_REQUEST_RATE_KEY
from widgetbridge.env import SecurityConfig

from .errors import (
    AuthChannelClosed,
    AuthChannelError,
    HostAuthError,
    NotEmbeddedError,
    RateLimitedError,
    TokenRequestTimeout,
)
from .models import AuthState, AuthStatus, MessageType, PendingRequest
from .nonce_store import NonceStore
from .origin import OriginValidator
from .rate_limit import RateLimiter
from .schemas import validate_auth_error_payload, validate_auth_token_payload
from .security import clear_sensitive_data, sanitize_error
from .token_cache import TokenCache

StateListener = Callable[[AuthState], None]


def epoch_ms() -> float:
    return time.time() * 1000


def _schedule_scrub(data: MutableMapping) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        clear_sensitive_data(data)
        return
    loop.call_soon(clear_sensitive_data, data)


class AuthChannel:
    def __init__(
        self,
        bus: MessageBus,
        *,
        config: SecurityConfig | None = None,
        origin_validator: OriginValidator | None = None,
        nonce_store: NonceStore | None = None,
        rate_limiter: RateLimiter | None = None,
        token_cache: TokenCache | None = None,
        clock: Callable[[], float] = epoch_ms,
        on_locale: Callable[[str], None] | None = None,
    ) -> None:
        self.bus = bus
        self.config = config or SecurityConfig()
        self.origin_validator = origin_validator or OriginValidator(self.config.allowed_origins)
        self.nonce_store = nonce_store or NonceStore(self.config.nonce_store_size)
        self.rate_limiter = rate_limiter or RateLimiter(
            window_ms=self.config.rate_limit_window_ms,
            max_requests=self.config.rate_limit_max_requests,
        )
        self.token_cache = token_cache or TokenCache(
            default_ttl_ms=self.config.token_cache_duration_ms
        )
        self.locale: str | None = None
        self.pending: dict[str, PendingRequest] = {}

        self._clock = clock
        self._on_locale = on_locale
        self._state = AuthState()
        self._state_listeners: list[StateListener] = []
        self._unsubscribe: Callable[[], None] | None = None

    # -- lifecycle -------------------------------------------------------------

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.bus.on_message(self.handle_message)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for nonce in list(self.pending):
            self._settle(nonce, error=AuthChannelClosed())
        self.token_cache.clear()

    # -- state -----------------------------------------------------------------

    @property
    def auth_state(self) -> AuthState:
        return self._state

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

        return unsubscribe

    def _transition(self, state: AuthState) -> None:
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                LOGGER.exception("Auth state listener failed status=%s", state.status.value)

    def _fail(self, error: str) -> None:
        self._transition(AuthState(status=AuthStatus.FAILED, error=error))

    # -- public operations -----------------------------------------------------

    async def get_token(self) -> str:
        cached = self.token_cache.get()
        if cached:
            return cached
        return await self._request_token()

    async def refresh_token(self) -> str:
        self.token_cache.clear()
        return await self._request_token(is_refresh=True)

    async def _request_token(self, is_refresh: bool = False) -> str:
        nonce = self.nonce_store.generate()

        if not self.rate_limiter.check(TOKEN_REQUEST_RATE_KEY):
            error = RateLimitedError()
            LOGGER.warning("[Security] Token request rate limit exceeded")
            self._fail(str(error))
            raise error

        if not self.bus.embedded:
            error = NotEmbeddedError()
            self._fail(str(error))
            raise error

        loop = asyncio.get_running_loop()
        message_type = MessageType.REFRESH_TOKEN if is_refresh else MessageType.REQUEST_TOKEN
        timestamp = int(self._clock())
        pending = PendingRequest(
            nonce=nonce,
            message_type=message_type,
            future=loop.create_future(),
            created_at=timestamp,
        )
        pending.timeout_handle = loop.call_later(
            self.config.request_timeout_ms / 1000, self._expire_request, nonce
        )
        self.pending[nonce] = pending
        self._transition(AuthState(status=AuthStatus.REQUESTING))

        try:
            await self.bus.send(
                {"type": message_type.value, "timestamp": timestamp, "nonce": nonce}
            )
        except Exception as error:
            LOGGER.error("Failed to send %s: %s", message_type.value, error)
            self._settle(nonce)
            self._fail("Token request could not be sent")
            raise AuthChannelError("Token request could not be sent.") from error

        try:
            return await pending.future
        except asyncio.CancelledError:
            self._settle(nonce)
            raise

    def _expire_request(self, nonce: str) -> None:
        pending = self.pending.get(nonce)
        if pending is None:
            return
        pending.timeout_handle = None
        error = TokenRequestTimeout()
        LOGGER.warning("Token request timed out nonce=%s", nonce)
        self._settle(nonce, error=error)
        self._fail(str(error))

    def _settle(
        self,
        nonce: str,
        *,
        token: str | None = None,
        error: BaseException | None = None,
    ) -> bool:
        """Remove a pending request and complete its future; False if it was not pending."""
        pending = self.pending.pop(nonce, None)
        if pending is None:
            return False
        if pending.timeout_handle is not None:
            pending.timeout_handle.cancel()
            pending.timeout_handle = None
        if pending.future.done():
            return True
        if error is not None:
            pending.future.set_exception(error)
        elif token is not None:
            pending.future.set_result(token)
        else:
            pending.future.cancel()
        return True

    # -- inbound ---------------------------------------------------------------

    def handle_message(self, message: InboundMessage) -> None:
        origin = message.origin
        if not self.origin_validator.is_allowed(origin):
            LOGGER.warning("[Security] Invalid origin: %s", origin)
            return

        if not self.rate_limiter.check(origin):
            LOGGER.warning("[Security] Rate limit exceeded: %s", origin)
            return

        data = message.data
        if not isinstance(data, Mapping):
            return

        message_type = data.get("type")
        if message_type == MessageType.AUTH_TOKEN.value:
            self._handle_auth_token(data)
        elif message_type == MessageType.AUTH_ERROR.value:
            self._handle_auth_error(data)

    def _handle_auth_token(self, data: Mapping) -> None:
        result = validate_auth_token_payload(
            data,
            now_ms=self._clock(),
            validity_ms=self.config.timestamp_validity_ms,
        )
        if not result.success:
            LOGGER.error("[Security] Invalid token payload: %s", result.error)
            self._fail("Invalid token format")
            return

        payload = result.data
        if not self.nonce_store.validate(payload.nonce):
            LOGGER.debug("[Security] Nonce already used (duplicate delivery): %s", payload.nonce)
            return

        self.token_cache.set(payload.token, self.config.token_cache_duration_ms)

        if payload.locale:
            LOGGER.info("Locale updated: %s", payload.locale)
            self.locale = payload.locale
            if self._on_locale is not None:
                self._on_locale(payload.locale)

        self._transition(
            AuthState(status=AuthStatus.AUTHENTICATED, last_validated_at=int(self._clock()))
        )

        if not self._settle(payload.nonce, token=payload.token):
            LOGGER.debug("No pending request for nonce=%s", payload.nonce)

        if isinstance(data, MutableMapping):
            _schedule_scrub(data)

    def _handle_auth_error(self, data: Mapping) -> None:
        result = validate_auth_error_payload(
            data,
            now_ms=self._clock(),
            validity_ms=self.config.timestamp_validity_ms,
        )
        if not result.success:
            LOGGER.error("[Security] Invalid error payload: %s", result.error)
            self._fail("Invalid error format")
            return

        error = sanitize_error(result.data.error, production=self.config.production)
        LOGGER.warning("Host reported auth failure: %s", error)
        self._fail(error)
        for nonce in list(self.pending):
            self._settle(nonce, error=HostAuthError(error))


_channel: AuthChannel | None = None


def configure_auth_channel(bus: MessageBus, *, attach: bool = True, **kwargs) -> AuthChannel:
    """Install the process-wide channel; any previous one is closed first."""
    global _channel
    if _channel is not None:
        _channel.close()
    _channel = AuthChannel(bus, **kwargs)
    if attach:
        _channel.attach()
    return _channel


def get_auth_channel() -> AuthChannel:
    if _channel is None:
        raise RuntimeError("Auth channel has not been configured.")
    return _channel


def reset_auth_channel() -> None:
    global _channel
    if _channel is not None:
        _channel.close()
    _channel = None
