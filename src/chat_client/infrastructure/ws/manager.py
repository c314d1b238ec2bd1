"""Client-side WebSocket connection manager."""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel

from chat_client.application.dto.events import (
    AuthOkEvent,
    AuthPayload,
    AuthRejectedEvent,
    EventName,
)
from chat_client.application.dto.principal import Principal
from chat_client.application.exceptions import (
    AppError,
    AuthRejectedError,
    FrameDecodeError,
    NotAuthenticatedError,
    TransportClosedError,
    UnauthenticatedError,
)
from chat_client.application.observable import ObservableValue
from chat_client.application.ports.auth import CredentialStore
from chat_client.application.ports.clock import Clock, SystemClock
from chat_client.application.ports.transport import Transport, TransportFactory
from chat_client.config import Settings, settings as default_settings
from chat_client.domain.value_objects.enums import ConnectionState
from chat_client.domain.value_objects.ids import UserId
from chat_client.infrastructure.log_context import connection_id_ctx
from chat_client.infrastructure.ws.codec import decode_frame, encode_frame, parse_payload

logger = logging.getLogger(__name__)

OnEventCallback = Callable[[str, dict[str, Any]], Any]

_KEEPALIVE_EVENTS = frozenset({EventName.PING, EventName.PONG})
_BUSY_STATES = frozenset({
    ConnectionState.CONNECTING,
    ConnectionState.CONNECTED,
    ConnectionState.AUTHENTICATING,
    ConnectionState.AUTHENTICATED,
    ConnectionState.RECONNECTING,
})


@dataclass(frozen=True, slots=True)
class ConnectionStatus:
    state: ConnectionState = ConnectionState.DISCONNECTED
    error: AppError | None = None

    @property
    def authenticated(self) -> bool:
        return self.state == ConnectionState.AUTHENTICATED


class ConnectionManager:
    """Owns the single duplex connection of this client process.

    Construct exactly one per session and hand it to the components that
    need it. ``disconnect()`` belongs to logout; views coming and going must
    leave the connection alone.
    """

    def __init__(
        self,
        url: str,
        credentials: CredentialStore,
        on_event: OnEventCallback,
        transport_factory: TransportFactory,
        *,
        settings: Settings = default_settings,
        clock: Clock | None = None,
    ) -> None:
        self._url = url
        self._credentials = credentials
        self._on_event = on_event
        self._transport_factory = transport_factory
        self._settings = settings
        self._clock = clock or SystemClock()

        self.status: ObservableValue[ConnectionStatus] = ObservableValue(ConnectionStatus())

        self._transport: Transport | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._auth_waiter: asyncio.Future[Principal] | None = None
        self._principal: Principal | None = None
        self._closing = False
        self._attempts = 0
        self._background: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> ConnectionState:
        return self.status.value.state

    @property
    def principal(self) -> Principal | None:
        return self._principal

    @property
    def user_id(self) -> UserId | None:
        return self._principal.user_id if self._principal else None

    @property
    def is_authenticated(self) -> bool:
        """True while authenticated with a credential that has not expired."""
        return self.status.value.authenticated and self._credentials.has_valid_credential()

    def subscribe(self, listener: Callable[[ConnectionStatus], None]) -> Callable[[], None]:
        return self.status.subscribe(listener)

    # -- lifecycle ---------------------------------------------------------

    async def connect(self) -> None:
        if self.state in _BUSY_STATES:
            return
        self._closing = False
        await self._establish(reconnecting=False)

    async def disconnect(self) -> None:
        self._closing = True

        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._fail_auth_waiter(TransportClosedError("Disconnected"))
        await self._teardown()
        self._principal = None
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Disconnected")

    async def send(self, event: str, payload: BaseModel | dict[str, Any] | None = None) -> None:
        transport = self._transport
        if self.state != ConnectionState.AUTHENTICATED or transport is None:
            raise NotAuthenticatedError(f"Cannot send {event}: connection is {self.state}")
        raw = encode_frame(event, payload)
        try:
            await transport.send(raw)
        except TransportClosedError:
            raise
        except (ConnectionError, OSError) as exc:
            raise TransportClosedError(f"Send of {event} failed: {exc}") from exc

    # -- establishing ------------------------------------------------------

    async def _establish(self, *, reconnecting: bool) -> None:
        fallback = ConnectionState.RECONNECTING if reconnecting else ConnectionState.DISCONNECTED

        credential = self._credentials.get_credential()
        if credential is None or credential.is_expired(self._clock.now()):
            err = UnauthenticatedError("No valid credential")
            self._set_state(ConnectionState.DISCONNECTED, err)
            raise err

        self._attempts += 1
        connection_id_ctx.set(str(self._attempts))
        self._set_state(ConnectionState.CONNECTING)

        transport = self._transport_factory()
        try:
            await asyncio.wait_for(transport.open(self._url), self._settings.CONNECT_TIMEOUT)
        except (TransportClosedError, ConnectionError, OSError, asyncio.TimeoutError) as exc:
            await self._safe_close(transport)
            err = TransportClosedError(f"Cannot connect to {self._url}")
            self._set_state(fallback, err)
            raise err from exc
        except BaseException:
            await self._safe_close(transport)
            raise

        if self._closing:
            await self._safe_close(transport)
            err = TransportClosedError("Disconnected while connecting")
            self._set_state(ConnectionState.DISCONNECTED, err)
            raise err

        self._transport = transport
        self._set_state(ConnectionState.CONNECTED)
        logger.debug("Transport open, authenticating")

        self._auth_waiter = asyncio.get_running_loop().create_future()
        try:
            await transport.send(encode_frame(EventName.AUTH, AuthPayload(token=credential.token)))
            self._set_state(ConnectionState.AUTHENTICATING)
            self._reader_task = asyncio.create_task(
                self._read_loop(transport), name=f"chat-reader-{self._attempts}",
            )
            principal = await asyncio.wait_for(self._auth_waiter, self._settings.AUTH_TIMEOUT)
        except AuthRejectedError as exc:
            await self._teardown()
            self._set_state(ConnectionState.DISCONNECTED, exc)
            logger.warning("Authentication rejected: %s", exc.detail)
            raise
        except (TransportClosedError, ConnectionError, OSError, asyncio.TimeoutError) as exc:
            await self._teardown()
            err = TransportClosedError("Connection lost before authentication completed")
            self._set_state(ConnectionState.DISCONNECTED if self._closing else fallback, err)
            raise err from exc
        except BaseException:
            await self._teardown()
            raise
        finally:
            self._auth_waiter = None

        self._principal = principal
        self._set_state(ConnectionState.AUTHENTICATED)
        logger.info("Authenticated as user %s (%s)", principal.user_id, principal.role)

    # -- inbound -----------------------------------------------------------

    async def _read_loop(self, transport: Transport) -> None:
        try:
            while True:
                raw = await transport.receive()
                if raw is None:
                    break
                self._handle_raw(raw)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Transport read failed", exc_info=True)
        self._on_transport_lost(transport)

    def _handle_raw(self, raw: str) -> None:
        try:
            frame = decode_frame(raw)
        except FrameDecodeError as exc:
            logger.warning("Dropping malformed frame: %s", exc.detail)
            return

        if frame.event == EventName.AUTH_OK:
            self._resolve_auth(frame.data)
            return
        if frame.event == EventName.AUTH_REJECTED:
            reason = AuthRejectedEvent.model_validate(frame.data).error if frame.data else None
            self._fail_auth_waiter(AuthRejectedError(reason or "Credential rejected"))
            return
        if frame.event in _KEEPALIVE_EVENTS:
            return

        try:
            self._on_event(frame.event, frame.data)
        except Exception:
            logger.exception("Event callback failed for %s", frame.event)

    def _resolve_auth(self, data: dict[str, Any]) -> None:
        waiter = self._auth_waiter
        if waiter is None or waiter.done():
            logger.debug("Unexpected auth:ok ignored")
            return
        try:
            ok = parse_payload(AuthOkEvent, data)
        except FrameDecodeError as exc:
            waiter.set_exception(AuthRejectedError(exc.detail))
            return
        waiter.set_result(Principal(user_id=UserId(ok.user_id), role=ok.role))

    def _fail_auth_waiter(self, exc: AppError) -> None:
        waiter = self._auth_waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(exc)

    def _on_transport_lost(self, transport: Transport) -> None:
        if transport is not self._transport:
            return
        if self._auth_waiter is not None and not self._auth_waiter.done():
            self._fail_auth_waiter(TransportClosedError("Transport closed"))
            return

        was_authenticated = self.state == ConnectionState.AUTHENTICATED
        self._transport = None
        self._reader_task = None
        self._principal = None
        closer = asyncio.create_task(self._safe_close(transport))
        self._background.add(closer)
        closer.add_done_callback(self._background.discard)

        if self._closing or not was_authenticated:
            self._set_state(ConnectionState.DISCONNECTED)
            return

        logger.warning("Connection lost unexpectedly, reconnecting")
        self._set_state(ConnectionState.RECONNECTING, TransportClosedError("Transport closed"))
        self._reconnect_task = asyncio.create_task(self._reconnect_loop(), name="chat-reconnect")

    # -- reconnect ---------------------------------------------------------

    def _backoff_delay(self, attempt: int) -> float:
        s = self._settings
        delay = min(s.RECONNECT_BASE_DELAY * (2 ** attempt), s.RECONNECT_MAX_DELAY)
        return delay + random.uniform(0, delay * s.RECONNECT_JITTER)

    async def _reconnect_loop(self) -> None:
        max_attempts = self._settings.RECONNECT_MAX_ATTEMPTS
        attempt = 0
        while max_attempts is None or attempt < max_attempts:
            delay = self._backoff_delay(attempt)
            attempt += 1
            logger.info("Reconnecting in %.2fs (attempt %d)", delay, attempt)
            await asyncio.sleep(delay)
            if self._closing:
                return
            try:
                await self._establish(reconnecting=True)
            except (UnauthenticatedError, AuthRejectedError) as exc:
                logger.warning("Reconnect stopped, credential must be refreshed: %s", exc.detail)
                return
            except TransportClosedError:
                continue
            logger.info("Reconnected after %d attempt(s)", attempt)
            return

        logger.error("Giving up after %d reconnect attempts", attempt)
        self._set_state(ConnectionState.DISCONNECTED, TransportClosedError("Reconnect attempts exhausted"))

    # -- helpers -----------------------------------------------------------

    def _set_state(self, state: ConnectionState, error: AppError | None = None) -> None:
        logger.debug("Connection state -> %s", state)
        self.status.set(ConnectionStatus(state=state, error=error))

    async def _teardown(self) -> None:
        transport, self._transport = self._transport, None
        reader, self._reader_task = self._reader_task, None
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if transport is not None:
            await self._safe_close(transport)

    async def _safe_close(self, transport: Transport) -> None:
        try:
            await transport.close()
        except Exception:
            logger.debug("Error while closing transport", exc_info=True)
