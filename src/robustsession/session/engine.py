"""
Session engine: drives one RobustSession from discovery to teardown.

The engine owns the session identity, the delivery cursor and every
in-flight exchange. Each step (resolve, select, exchange) returns a value
or a StepResult that the engine's loops act on: success moves the state
machine forward, retry rotates to another target after recording the
failure, fatal ends the session and tells the owner.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from typing import Any, Callable, Coroutine

from robustsession.config import SessionConfig
from robustsession.lib.cancellation import CancellationToken
from robustsession.network.backoff import BackoffLedger
from robustsession.network.discovery import Resolver
from robustsession.network.directory import NetworkEntry
from robustsession.network.selector import Scheduler, SelectionMode, TargetSelector, TimerHandle
from robustsession.protocol.errors import (
    DiscoveryFailure,
    MalformedResponse,
    NetworkNotResolved,
    PermanentRequestFailure,
    RobustError,
    SessionError,
    TemporaryRequestFailure,
)
from robustsession.protocol.messages import (
    START_CURSOR,
    CreateSessionRequest,
    Cursor,
    DeleteSessionRequest,
    GetMessagesRequest,
    PostMessageRequest,
    Request,
    SessionCredentials,
    StreamMessage,
)
from robustsession.protocol.parser import StreamMessageParser
from robustsession.protocol.state import SessionState, SessionStateMachine
from robustsession.session.events import SessionEvent, SessionEventHandler, SessionEventType
from robustsession.session.handler import SessionHandler
from robustsession.transport.base import Transport
from robustsession.transport.types import StepResult, StepStatus

logger = logging.getLogger(__name__)

# Longest chunk excerpt included in parse error diagnostics.
MAX_CHUNK_EXCERPT = 256


class IdleWatchdog:
    """One-shot inactivity timer for the GetMessages stream."""

    def __init__(
        self,
        scheduler: Scheduler,
        timeout: float,
        token: CancellationToken,
        on_expired: Callable[[], None],
    ):
        self._scheduler = scheduler
        self._timeout = timeout
        self._token = token
        self._on_expired = on_expired
        self._handle: TimerHandle | None = None
        self.expired = False

    def arm(self) -> None:
        """(Re)start the timer."""
        self.cancel()
        if self._token.cancelled or self.expired:
            return
        self._handle = self._token.register(
            self._scheduler.call_later(self._timeout, self._fire)
        )

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._token.unregister(self._handle)
            self._handle = None

    def _fire(self) -> None:
        self._token.unregister(self._handle)
        self._handle = None
        self.expired = True
        self._on_expired()


class RobustSession:
    """
    One logical connection to a RobustIRC network.

    Survives the failure of individual servers: requests are retried on
    other targets with exponential backoff, and the message stream resumes
    from the last delivered message.
    """

    def __init__(
        self,
        address: str,
        handler: SessionHandler,
        resolver: Resolver,
        selector: TargetSelector,
        transport: Transport,
        config: SessionConfig | None = None,
        scheduler: Scheduler | None = None,
    ):
        self.address = address
        self.handler = handler
        self.config = config or SessionConfig()

        self._resolver = resolver
        self._selector = selector
        self._transport = transport
        self._scheduler = scheduler

        self._state = SessionStateMachine()
        self._token = CancellationToken()
        self._credentials: SessionCredentials | None = None
        self._lastseen: Cursor = START_CURSOR
        self._tasks: set[asyncio.Task] = set()
        self._stream_task: asyncio.Task | None = None
        self._stream_exchange: asyncio.Task | None = None
        self._event_handlers: list[SessionEventHandler] = []
        self._lost_reason: str | None = None

    # -- properties ---------------------------------------------------------

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state.state

    @property
    def session_id(self) -> str | None:
        """Server-issued session id, once CreateSession succeeded."""
        return self._credentials.session_id if self._credentials else None

    @property
    def lastseen(self) -> Cursor:
        """Cursor of the last message delivered to the handler."""
        return self._lastseen

    @property
    def is_established(self) -> bool:
        return self._state.is_established

    @property
    def is_write_only(self) -> bool:
        return self._state.state == SessionState.WRITE_ONLY

    @property
    def is_destroyed(self) -> bool:
        return self._state.is_destroyed

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def pending_tasks(self) -> int:
        """Number of in-flight tasks owned by this session."""
        return len(self._tasks)

    def on_state_change(self, callback: Callable[[SessionState, SessionState], None]) -> None:
        """Register callback for state changes."""
        self._state.on_transition(callback)

    def on_event(self, handler: SessionEventHandler) -> None:
        """
        Register a handler for diagnostic events.

        Args:
            handler: Callback invoked when session events occur.
        """
        self._event_handlers.append(handler)

    def _emit(
        self,
        type: SessionEventType,
        data: dict[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        event = SessionEvent(type=type, timestamp=time.time(), data=data, error=error)
        for handler in self._event_handlers:
            try:
                handler(event)
            except Exception:
                # Don't let handler errors affect the session
                logger.debug("Session event handler failed", exc_info=True)

    # -- host operations ----------------------------------------------------

    def start(self) -> asyncio.Task:
        """
        Begin connecting: resolve, create the session, start streaming.

        Returns:
            The task running the connect flow.
        """
        if self._state.state != SessionState.IDLE:
            raise SessionError(f"Session already started ({self._state.state})")
        logger.info(f"Connecting to {self.address}")
        self._state.transition(SessionState.RESOLVING)
        return self._spawn(self._connect(), name=f"robustsession-connect-{self.address}")

    def send(self, line: str) -> asyncio.Task:
        """
        Post an outgoing IRC line (fire-and-forget).

        Returns:
            The task delivering the message, retries included.

        Raises:
            SessionError: If the session is not established.
        """
        if not self._state.is_established or self._credentials is None:
            raise SessionError(f"Cannot send in state {self._state.state}")
        request = PostMessageRequest(data=line.rstrip("\r\n"))
        return self._spawn(self._post_message(request), name="robustsession-post")

    def write_only(self) -> None:
        """
        Detach the read side: stop streaming, keep sending possible.

        Raises:
            SessionError: If the session is not established.
        """
        if self.is_write_only:
            return
        if not self._state.is_established:
            raise SessionError(f"Cannot detach read side in state {self._state.state}")
        for task in (self._stream_exchange, self._stream_task):
            if task is not None and not task.done():
                task.cancel()
        self._stream_task = None
        self._stream_exchange = None
        self._state.transition(SessionState.WRITE_ONLY)
        logger.info(f"Session {self.session_id} is now write-only")

    def destroy(self) -> None:
        """
        Tear the session down.

        Cancels the token, which cancels pending discovery waits and backoff
        timers, and aborts every in-flight exchange. Safe to call repeatedly.
        """
        if self._state.is_destroyed:
            return
        self._token.cancel()
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
        self._stream_task = None
        self._stream_exchange = None
        self._state.transition(SessionState.DESTROYED)
        logger.info(f"Session to {self.address} destroyed")
        self._emit(SessionEventType.DESTROYED, {"session_id": self.session_id})

    async def aclose(self, quit_message: str | None = None) -> None:
        """
        Destroy the session and wait for its tasks to finish.

        When the session was established, a best-effort DeleteSession is
        sent so the server can tell the other users why we left.
        """
        pending = [task for task in self._tasks if task is not asyncio.current_task()]
        self.destroy()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if (
            self.config.delete_on_close
            and self._credentials is not None
            and self._lost_reason is None
        ):
            await self._delete_session(
                quit_message if quit_message is not None else self.config.quit_message
            )

    # -- task bookkeeping ---------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        self._token.register(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._token.unregister(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug(f"Task {task.get_name()} ended with {error!r}")

    def _scheduler_or_loop(self) -> Scheduler:
        return self._scheduler or asyncio.get_running_loop()

    def _ledger(self) -> BackoffLedger | None:
        entry = self._selector.registry.get(self.address)
        return entry.backoff if entry else None

    def _record_failure(self, target: str) -> None:
        ledger = self._ledger()
        if ledger is not None:
            ledger.record_failure(target)

    def _record_success(self, target: str) -> None:
        ledger = self._ledger()
        if ledger is not None:
            ledger.record_success(target)

    # -- connect flow -------------------------------------------------------

    async def _connect(self) -> None:
        await self._resolve()

        credentials = await self._create_session()
        if credentials is None:
            return

        self._credentials = credentials
        self._state.transition(SessionState.SELECTING_STREAM_TARGET)
        logger.info(f"Session {credentials.session_id} created on {self.address}")
        self._emit(SessionEventType.SESSION_CREATED, {"session_id": credentials.session_id})

        try:
            self.handler.on_connected()
        except Exception:
            logger.exception("on_connected handler failed")

        if self._state.state == SessionState.SELECTING_STREAM_TARGET:
            self._stream_task = self._spawn(
                self._stream_loop(), name=f"robustsession-stream-{credentials.session_id}"
            )

    async def _resolve(self) -> NetworkEntry:
        while True:
            if self._state.state != SessionState.RESOLVING:
                self._state.transition(SessionState.RESOLVING)
            self._emit(SessionEventType.RESOLVING, {"address": self.address})
            try:
                entry = await self._resolver.resolve(self.address, self._token)
            except DiscoveryFailure as e:
                logger.warning(
                    f"{e}; connecting again in {self.config.discovery_retry_delay}s"
                )
                self._emit(SessionEventType.DISCOVERY_FAILED, {"address": self.address}, e)
                await asyncio.sleep(self.config.discovery_retry_delay)
                continue

            self._emit(SessionEventType.RESOLVED, {
                "address": entry.address,
                "targets": list(entry.targets),
            })
            return entry

    async def _create_session(self) -> SessionCredentials | None:
        request = CreateSessionRequest()
        result = await self._request_loop(
            request,
            selecting=SessionState.SELECTING_CREATE_TARGET,
            active=SessionState.CREATING_SESSION,
        )
        if result.status is StepStatus.FATAL:
            self._fail(result.error, result.target)
            return None

        try:
            return SessionCredentials.from_body(result.value or b"")
        except MalformedResponse as e:
            self._emit(SessionEventType.ERROR_PARSE_JSON, {
                "request": request.name,
                "target": result.target,
                "chunk": _excerpt(e.chunk),
            }, e)
            self._fail(e, result.target)
            return None

    # -- generic request loop -----------------------------------------------

    async def _acquire_target(self, mode: SelectionMode) -> str:
        while True:
            try:
                return await self._selector.acquire(self.address, mode, self._token)
            except NetworkNotResolved:
                logger.warning(f"{self.address} is no longer resolved, resolving again")

            try:
                await self._resolver.resolve(self.address, self._token)
            except DiscoveryFailure as e:
                self._emit(SessionEventType.DISCOVERY_FAILED, {"address": self.address}, e)
                await asyncio.sleep(self.config.discovery_retry_delay)

    async def _request_loop(
        self,
        request: Request,
        selecting: SessionState | None = None,
        active: SessionState | None = None,
    ) -> StepResult[bytes]:
        """Run ``request`` against healthy targets until success or fatal error."""
        failed_target: str | None = None
        while True:
            if selecting is not None:
                self._state.transition(selecting)
            target = await self._acquire_target(request.selection)
            if failed_target is not None:
                self._emit_retry(request.name, failed_target, target)
            if active is not None:
                self._state.transition(active)

            result = await self._attempt(target, request)
            if result.status is StepStatus.RETRY:
                failed_target = target
                continue
            return result

    async def _attempt(self, target: str, request: Request) -> StepResult[bytes]:
        try:
            body = await self._transport.execute(target, request, self._credentials)
        except TemporaryRequestFailure as e:
            self._record_failure(target)
            logger.warning(f"{request.name} on {target}: {e}")
            self._emit(SessionEventType.ERROR_TEMPORARY, {
                "request": request.name,
                "target": target,
            }, e)
            return StepResult.retry(e, target)
        except PermanentRequestFailure as e:
            self._record_failure(target)
            return StepResult.fatal(e, target)

        self._record_success(target)
        return StepResult.success(body, target)

    def _emit_retry(self, request_name: str, failed_target: str, next_target: str) -> None:
        logger.info(f"Retrying request {request_name} (failed on {failed_target}) on {next_target}")
        self._emit(SessionEventType.ERROR_RETRY, {
            "request": request_name,
            "target": failed_target,
            "next_target": next_target,
        })

    # -- PostMessage / DeleteSession ----------------------------------------

    async def _post_message(self, request: PostMessageRequest) -> None:
        result = await self._request_loop(request)
        if result.status is StepStatus.FATAL:
            self._fail(result.error, result.target)
            return
        logger.debug(f"Posted message {request.client_message_id} via {result.target}")

    async def _delete_session(self, quit_message: str) -> None:
        request = DeleteSessionRequest(quit_message=quit_message)
        token = CancellationToken()
        try:
            target = await asyncio.wait_for(
                self._selector.acquire(self.address, request.selection, token),
                timeout=self.config.request_timeout,
            )
            await self._transport.execute(target, request, self._credentials)
        except (asyncio.TimeoutError, RobustError) as e:
            logger.warning(f"DeleteSession for {self.session_id} failed: {e}")
            return
        finally:
            token.cancel()
        logger.info(f"Deleted session {self.session_id}")

    # -- GetMessages --------------------------------------------------------

    async def _stream_loop(self) -> None:
        failed_target: str | None = None
        while True:
            if self._state.state == SessionState.STREAMING:
                self._state.transition(SessionState.SELECTING_STREAM_TARGET)
            target = await self._acquire_target(GetMessagesRequest.selection)
            if failed_target is not None:
                self._emit_retry(GetMessagesRequest.name, failed_target, target)
            self._state.transition(SessionState.STREAMING)

            result = await self._get_messages(target)
            if result.status is StepStatus.FATAL:
                self._fail(result.error, target)
                return
            failed_target = target

    async def _get_messages(self, target: str) -> StepResult[None]:
        """
        Hold one GetMessages request open until it fails.

        The endpoint never completes normally, so every outcome other than
        a permanent error means: back off this target and try the next.
        """
        request = GetMessagesRequest(lastseen=self._lastseen)
        parser = StreamMessageParser()
        exchange: asyncio.Task | None = None

        def expired() -> None:
            if exchange is not None and not exchange.done():
                exchange.cancel()

        watchdog = IdleWatchdog(
            self._scheduler_or_loop(), self.config.idle_timeout, self._token, expired
        )
        exchange = self._spawn(
            self._consume_stream(target, request, parser, watchdog),
            name=f"robustsession-getmessages-{target}",
        )
        self._stream_exchange = exchange
        watchdog.arm()

        try:
            await asyncio.wait({exchange})
        finally:
            watchdog.cancel()
            if not exchange.done():
                exchange.cancel()
            if self._stream_exchange is exchange:
                self._stream_exchange = None
            parser.close()

        self._emit(SessionEventType.STREAM_CLOSED, {"target": target})

        if exchange.cancelled():
            if not watchdog.expired:
                raise asyncio.CancelledError()
            error: RobustError = TemporaryRequestFailure(
                f"GetMessages: no message for {self.config.idle_timeout}s", target=target
            )
        elif exchange.exception() is not None:
            exc = exchange.exception()
            if isinstance(exc, PermanentRequestFailure):
                self._record_failure(target)
                return StepResult.fatal(exc, target)
            if isinstance(exc, RobustError):
                error = exc
            else:
                logger.error(f"GetMessages on {target} failed unexpectedly: {exc!r}")
                error = TemporaryRequestFailure(str(exc), target=target, cause=exc)
        else:
            error = TemporaryRequestFailure("GetMessages: stream ended", target=target)

        self._record_failure(target)
        logger.warning(f"{error}")
        self._emit(SessionEventType.ERROR_TEMPORARY, {
            "request": request.name,
            "target": target,
        }, error)
        return StepResult.retry(error, target)

    async def _consume_stream(
        self,
        target: str,
        request: GetMessagesRequest,
        parser: StreamMessageParser,
        watchdog: IdleWatchdog,
    ) -> None:
        self._emit(SessionEventType.STREAM_OPENED, {
            "target": target,
            "lastseen": str(request.lastseen),
        })
        async with aclosing(self._transport.stream(target, request, self._credentials)) as chunks:
            async for chunk in chunks:
                try:
                    messages = parser.feed(chunk)
                except MalformedResponse as e:
                    # Not fatal: a broken stream is caught by the watchdog.
                    logger.warning(f"Error parsing chunk from {target} as JSON: {e}")
                    self._emit(SessionEventType.ERROR_PARSE_JSON, {
                        "request": request.name,
                        "target": target,
                        "chunk": _excerpt(chunk),
                    }, e)
                    continue

                for message in messages:
                    if self._token.cancelled:
                        return
                    self._handle_stream_message(target, message)
                    watchdog.arm()

    def _handle_stream_message(self, target: str, message: StreamMessage) -> None:
        if message.is_delivery:
            try:
                self.handler.on_line_received(message.data)
            except Exception:
                logger.exception("on_line_received handler failed")
            self._lastseen = message.cursor

        if message.is_ping:
            logger.debug(f"Ping from {target}")
            if message.servers and self._selector.registry.update_targets(
                self.address, message.servers
            ):
                self._emit(SessionEventType.SERVERS_UPDATED, {
                    "target": target,
                    "servers": list(message.servers),
                })

        self._record_success(target)

    # -- permanent failure --------------------------------------------------

    def _fail(self, error: RobustError | None, target: str | None = None) -> None:
        if self._state.is_destroyed:
            return
        reason = str(error) if error is not None else "unknown error"
        self._lost_reason = reason
        logger.error(f"Permanent error on {target or self.address}: {reason}")
        self._emit(SessionEventType.ERROR_PERMANENT, {"target": target}, error)
        self.destroy()
        try:
            self.handler.on_connection_lost(reason)
        except Exception:
            logger.exception("on_connection_lost handler failed")


def _excerpt(chunk: bytes | None) -> str:
    if not chunk:
        return ""
    return chunk[:MAX_CHUNK_EXCERPT].decode("utf-8", errors="replace").strip()
