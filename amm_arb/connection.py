"""
Resilient connection manager for the streaming data source.

State machine::

    CONNECTING -> LIVE
    LIVE -> RECONNECTING            socket close/error or failed health probe
    RECONNECTING -> LIVE            reconnect succeeded (attempt counter reset)
    RECONNECTING -> DEGRADED        attempts exceeded max_reconnect_attempts
    DEGRADED -> FAILED              fallback transport cannot be (re)established

All transitions happen inside one supervisor task that consumes an event
queue. Every event carries the generation of the handle that produced it;
events from a handle that has since been replaced are dropped, so a socket
error and a probe failure for the same handle cause a single reconnect.

Consumers never hold a handle. ``ManagedDataSource`` resolves
``manager.current()`` on every call.
"""

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from .config import ConnectionSettings
from .data_source import BlockCallback, DataSource, DisconnectHook
from .exceptions import ConnectionExhaustedError, NoLiveHandleError
from .types import ConnectionState
from .utils import call_with_timeout, get_logger

logger = get_logger(__name__)

StreamingFactory = Callable[[DisconnectHook], Awaitable[DataSource]]
FallbackFactory = Callable[[], Awaitable[DataSource]]

_SERVING = (ConnectionState.LIVE, ConnectionState.DEGRADED)


@dataclass
class _Event:
    kind: str  # connect | disconnect | probe_failed
    generation: int
    error: Optional[BaseException] = None


@dataclass
class Subscription:
    """Registry entry; survives reconnects until explicitly unsubscribed."""

    key: str
    callback: BlockCallback
    restore: Callable[[DataSource], Awaitable[str]]
    handle_subscription_id: Optional[str] = None


class ConnectionManager:
    """
    Owns the data-source handle and its lifecycle.

    Args:
        connect_streaming: Opens a streaming handle, given the disconnect hook
            it must call when the socket drops. None to run on the fallback only.
        connect_fallback: Opens the polling fallback handle, None if unavailable
        settings: Reconnect policy
        metrics: Optional ScannerMetrics for state/attempt reporting
        sleep: Backoff sleep, injectable for tests
    """

    def __init__(
        self,
        connect_streaming: Optional[StreamingFactory],
        connect_fallback: Optional[FallbackFactory],
        settings: ConnectionSettings,
        metrics: Optional[Any] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._connect_streaming = connect_streaming
        self._connect_fallback = connect_fallback
        self.settings = settings
        self.metrics = metrics
        self._sleep = sleep

        self._state = ConnectionState.CONNECTING
        self._handle: Optional[DataSource] = None
        self._generation = 0
        self._attempts = 0
        self._events: "asyncio.Queue[_Event]" = asyncio.Queue()
        self._subscriptions: Dict[str, Subscription] = {}
        self._keys = itertools.count(1)
        # held by subscribe/unsubscribe and by the supervisor while restoring
        self._registry_lock = asyncio.Lock()

        self._supervisor: Optional[asyncio.Task] = None
        self._health_task: Optional[asyncio.Task] = None
        self._settled = asyncio.Event()
        self._failed = asyncio.Event()
        self._failure: Optional[ConnectionExhaustedError] = None
        self.transitions: list = []

    # Observation

    @property
    def state(self) -> ConnectionState:
        return self._state

    def get_connection_state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def generation(self) -> int:
        return self._generation

    def current(self) -> DataSource:
        """
        Return the handle currently serving requests.

        Raises:
            ConnectionExhaustedError: If the manager reached FAILED
            NoLiveHandleError: While connecting or reconnecting
        """
        if self._state is ConnectionState.FAILED:
            raise self._failure or ConnectionExhaustedError("Connection failed")
        if self._state in _SERVING and self._handle is not None:
            return self._handle
        raise NoLiveHandleError(f"No live data-source handle (state={self._state.value})")

    # Lifecycle

    async def start(self) -> ConnectionState:
        """
        Connect and wait until the manager is serving or has failed.

        Raises:
            ConnectionExhaustedError: If neither transport could be established
        """
        if self._supervisor is None:
            self._supervisor = asyncio.create_task(self._supervise())
            self._post(_Event("connect", self._generation))
        await self._settled.wait()
        if self._state is ConnectionState.FAILED:
            raise self._failure
        return self._state

    async def stop(self) -> None:
        """Cancel supervision and close the current handle."""
        for task in (self._supervisor, self._health_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._supervisor = None
        self._health_task = None
        await self._close_handle()

    async def wait_for_failure(self) -> None:
        """
        Block until the manager reaches FAILED.

        Raises:
            ConnectionExhaustedError: Always, once FAILED is reached
        """
        await self._failed.wait()
        raise self._failure

    # Subscriptions

    async def subscribe(self, callback: BlockCallback) -> str:
        """Register a block callback; it is re-registered after every reconnect."""
        key = f"sub-{next(self._keys)}"
        entry = Subscription(
            key=key, callback=callback, restore=lambda handle: handle.subscribe_live(callback)
        )
        async with self._registry_lock:
            self._subscriptions[key] = entry
            if self._state in _SERVING and self._handle is not None:
                entry.handle_subscription_id = await entry.restore(self._handle)
        return key

    async def unsubscribe(self, key: str) -> None:
        async with self._registry_lock:
            entry = self._subscriptions.pop(key, None)
            if entry is None:
                return
            if (
                entry.handle_subscription_id is not None
                and self._state in _SERVING
                and self._handle is not None
            ):
                await self._handle.unsubscribe(entry.handle_subscription_id)

    @property
    def subscriptions(self) -> Tuple[str, ...]:
        return tuple(self._subscriptions)

    # Supervisor

    def _post(self, event: _Event) -> None:
        self._events.put_nowait(event)

    def _hook_for(self, generation: int) -> DisconnectHook:
        def on_disconnect(error: Optional[BaseException] = None) -> None:
            self._post(_Event("disconnect", generation, error))

        return on_disconnect

    async def _supervise(self) -> None:
        while self._state is not ConnectionState.FAILED:
            event = await self._events.get()
            if event.kind == "connect":
                await self._connect()
                continue

            if event.generation != self._generation or self._state not in _SERVING:
                logger.debug(
                    f"Ignoring stale {event.kind} event (gen {event.generation}, "
                    f"current {self._generation}, state {self._state.value})"
                )
                continue

            reason = event.error or event.kind
            if self._state is ConnectionState.LIVE:
                logger.warning(f"Streaming connection lost: {reason}")
                await self._reconnect()
            else:
                logger.warning(f"Fallback transport lost: {reason}")
                await self._degrade()

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        self.transitions.append((previous, state))
        if state is ConnectionState.FAILED:
            logger.critical(f"Connection {previous.value} -> {state.value}")
        else:
            logger.info(f"Connection {previous.value} -> {state.value}")
        if self.metrics is not None:
            self.metrics.set_connection_state(state)

    async def _connect(self) -> None:
        if self._connect_streaming is None:
            logger.info("No streaming endpoint configured, using fallback transport")
            await self._degrade()
            return
        self._set_state(ConnectionState.CONNECTING)
        try:
            handle = await self._open_streaming()
        except Exception as e:
            logger.warning(f"Initial connection failed: {e}")
            await self._reconnect()
            return
        await self._install(handle, ConnectionState.LIVE)

    async def _open_streaming(self) -> DataSource:
        hook = self._hook_for(self._generation + 1)
        return await call_with_timeout(
            self._connect_streaming(hook), self.settings.connect_timeout_sec, "connect"
        )

    async def _reconnect(self) -> None:
        await self._retire_handle()
        self._set_state(ConnectionState.RECONNECTING)
        while True:
            self._attempts += 1
            if self._attempts > self.settings.max_reconnect_attempts:
                logger.error(
                    f"Reconnect ceiling reached ({self.settings.max_reconnect_attempts}), "
                    "switching to fallback transport"
                )
                await self._degrade()
                return

            delay = self.settings.backoff_delay(self._attempts)
            logger.info(
                f"Reconnecting in {delay:.1f}s "
                f"(attempt {self._attempts}/{self.settings.max_reconnect_attempts})"
            )
            if self.metrics is not None:
                self.metrics.record_reconnect_attempt()
            await self._sleep(delay)

            try:
                handle = await self._open_streaming()
            except Exception as e:
                logger.warning(f"Reconnect attempt {self._attempts} failed: {e}")
                continue
            await self._install(handle, ConnectionState.LIVE)
            return

    async def _degrade(self) -> None:
        await self._retire_handle()
        if self._connect_fallback is None:
            self._fail("no fallback transport configured")
            return
        try:
            handle = await call_with_timeout(
                self._connect_fallback(), self.settings.connect_timeout_sec, "connect"
            )
        except Exception as e:
            self._fail(f"fallback transport unavailable: {e}")
            return
        await self._install(handle, ConnectionState.DEGRADED)

    def _fail(self, reason: str) -> None:
        self._failure = ConnectionExhaustedError(
            f"Data source connection failed: {reason}", attempts=self._attempts
        )
        self._set_state(ConnectionState.FAILED)
        self._failed.set()
        self._settled.set()

    async def _install(self, handle: DataSource, state: ConnectionState) -> None:
        self._generation += 1
        self._handle = handle
        if state is ConnectionState.LIVE:
            self._attempts = 0
        async with self._registry_lock:
            self._set_state(state)
            self._health_task = asyncio.create_task(
                self._health_loop(handle, self._generation)
            )
            self._settled.set()
            await self._restore_subscriptions(handle, list(self._subscriptions.values()))

    async def _restore_subscriptions(self, handle: DataSource, entries) -> None:
        for entry in entries:
            if entry.key not in self._subscriptions:
                continue
            try:
                entry.handle_subscription_id = await entry.restore(handle)
                logger.info(f"Restored subscription {entry.key}")
            except Exception as e:
                entry.handle_subscription_id = None
                logger.error(f"Failed to restore subscription {entry.key}: {e}")

    async def _retire_handle(self) -> None:
        if self._health_task is not None:
            self._health_task.cancel()
            self._health_task = None
        await self._close_handle()

    async def _close_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        for entry in self._subscriptions.values():
            entry.handle_subscription_id = None
        try:
            await handle.close()
        except Exception as e:
            logger.debug(f"Error closing retired handle: {e}")

    async def _health_loop(self, handle: DataSource, generation: int) -> None:
        interval = self.settings.health_check_interval_sec
        while True:
            await asyncio.sleep(interval)
            try:
                await call_with_timeout(handle.get_block_marker(), interval, "health probe")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Health probe failed: {e}")
                self._post(_Event("probe_failed", generation, e))
                return


class ManagedDataSource:
    """
    ``DataSource`` facade that resolves the manager's current handle on
    every call, so a reconnect mid-scan never leaves a consumer on a dead
    handle.
    """

    def __init__(self, manager: ConnectionManager):
        self.manager = manager

    async def get_reserves(self, pool: str) -> Tuple[int, int]:
        return await self.manager.current().get_reserves(pool)

    async def get_pool_address(
        self, factory: str, token_a: str, token_b: str, fee_tier: Optional[int] = None
    ) -> Optional[str]:
        return await self.manager.current().get_pool_address(
            factory, token_a, token_b, fee_tier
        )

    async def quote_single_hop(
        self, quoter: str, token_in: str, token_out: str, fee_tier: int, amount_in: int
    ) -> int:
        return await self.manager.current().quote_single_hop(
            quoter, token_in, token_out, fee_tier, amount_in
        )

    async def quote_multi_hop(self, quoter: str, path: bytes, amount_in: int) -> int:
        return await self.manager.current().quote_multi_hop(quoter, path, amount_in)

    async def get_gas_price(self) -> int:
        return await self.manager.current().get_gas_price()

    async def get_block_marker(self) -> int:
        return await self.manager.current().get_block_marker()

    async def subscribe_live(self, callback: BlockCallback) -> str:
        return await self.manager.subscribe(callback)

    async def unsubscribe(self, subscription_id: str) -> None:
        await self.manager.unsubscribe(subscription_id)

    async def close(self) -> None:
        await self.manager.stop()
