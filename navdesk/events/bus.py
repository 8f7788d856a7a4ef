"""
Thread-safe event bus for portfolio events.

CRITICAL PROPERTIES:
1. Thread-safe via queues (producer-consumer pattern)
2. Listeners registered by event type, handed events in subscription order
3. Every listener has its own worker thread and FIFO queue
4. A slow or hung listener never delays delivery to other listeners
5. Listener failures are isolated (logged and recorded, never re-raised)
6. Graceful shutdown drains the bus and every listener queue
7. publish() never waits for listeners
"""

import atexit
import os
import queue
import threading
import time
import weakref
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple, Type

from navdesk.errors import ListenerFailure
from navdesk.logging import get_logger, LogStream

Listener = Callable[[object], None]

# ============================================================================
# GLOBAL REGISTRY (helps tests / interpreter shutdown)
# ============================================================================

_BUS_REGISTRY: "weakref.WeakSet[PortfolioEventBus]" = weakref.WeakSet()  # type: ignore[name-defined]


def _stop_all_buses_at_exit() -> None:
    for bus in list(_BUS_REGISTRY):
        try:
            if bus.is_running:
                bus.stop(timeout=0.2)
        except Exception:
            # Never raise during interpreter shutdown
            pass


atexit.register(_stop_all_buses_at_exit)


def _listener_name(listener: Listener) -> str:
    name = getattr(listener, "__qualname__", None) or getattr(listener, "__name__", None)
    if name is None:
        name = type(listener).__name__
    return name


# ============================================================================
# LISTENER WORKER
# ============================================================================

class _ListenerWorker:
    """
    Delivers events to one listener, FIFO, on its own thread.

    One worker per listener object, shared by all of its subscriptions, so a
    listener registered for several event types still sees them in publish
    order.
    """

    def __init__(self, bus: "PortfolioEventBus", listener: Listener, max_queue_size: int):
        self.bus = bus
        self.listener = listener
        self.name = _listener_name(listener)
        self.subscriptions = 0
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        self._stop_event.clear()
        if self.is_alive:
            return
        self._thread = threading.Thread(
            target=self._run,
            name=f"PortfolioEventBus-{self.name}",
            daemon=self.bus._daemon,
        )
        self._thread.start()

    def submit(self, event: object) -> bool:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            return False
        return True

    def stop(self) -> None:
        """Ask the worker to exit once its queue is empty."""
        self._stop_event.set()

    def join(self, timeout: Optional[float]) -> bool:
        """Wait for the worker thread. Returns True if it has exited."""
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return True
        thread.join(timeout=timeout)
        return not thread.is_alive()

    def backlog(self) -> int:
        return self._queue.qsize()

    def _run(self) -> None:
        while True:
            try:
                event = self._queue.get(block=True, timeout=0.05)
            except queue.Empty:
                # submit() always happens before stop(), so an empty queue
                # seen after the stop flag is final
                if self._stop_event.is_set() and self._queue.empty():
                    break
                continue
            self.bus._call_listener(self.listener, event)


# ============================================================================
# EVENT BUS
# ============================================================================

class PortfolioEventBus:
    """
    In-process publish/subscribe for portfolio events.

    ARCHITECTURE:
    - Producers call publish(event) from any thread
    - Events queued in thread-safe queue
    - Dispatcher thread takes events FIFO and hands each one to the workers
      of the event type's listeners, in subscription order
    - Each listener runs on its own worker thread with a bounded FIFO queue
    - Listener failures logged, recorded and counted; delivery continues

    THREAD SAFETY:
    - publish() is thread-safe and serialized against stop(): an event is
      either accepted and delivered, or rejected with RuntimeError
    - subscribe()/unsubscribe() swap listener lists under a lock, so they
      are safe while running, including from inside a listener
    - Listeners execute on worker threads (NOT caller thread)

    USAGE:
        bus = PortfolioEventBus()
        bus.subscribe(PortfolioRecalculated, on_recalculated)
        bus.start()

        # From any thread:
        bus.publish(PortfolioRecalculated(...))

        # Shutdown (delivers everything already queued):
        bus.stop()
    """

    def __init__(
        self,
        max_queue_size: int = 10000,
        failure_history_size: int = 100,
        *,
        listener_queue_size: Optional[int] = None,
        daemon: Optional[bool] = None,
    ):
        """
        Initialize event bus.

        Args:
            max_queue_size: Maximum events in queue (new events dropped beyond it)
            failure_history_size: Number of ListenerFailure records kept
            listener_queue_size: Maximum events waiting for one listener
                (default: max_queue_size)
            daemon: Run bus threads as daemon threads (default: only under pytest)
        """
        self.logger = get_logger(LogStream.EVENTS)

        self._listener_queue_size = listener_queue_size or max_queue_size
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)

        # event_type -> tuple of listeners; replaced, never mutated
        self._listeners: Dict[Type, Tuple[Listener, ...]] = {}
        self._workers: Dict[Listener, _ListenerWorker] = {}
        self._retired: List[_ListenerWorker] = []
        self._listeners_lock = threading.Lock()

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._lifecycle_lock = threading.Lock()
        self._publish_lock = threading.Lock()

        # Events and deliveries accepted but not finished yet
        self._idle = threading.Condition()
        self._pending = 0

        # Under pytest, stray non-daemon threads can hang the test runner.
        if daemon is None:
            daemon = bool(os.environ.get('PYTEST_CURRENT_TEST') or os.environ.get('PYTEST_RUNNING'))
        self._daemon = bool(daemon)

        _BUS_REGISTRY.add(self)

        # Statistics
        self._stats_lock = threading.Lock()
        self._events_published = 0
        self._events_processed = 0
        self._events_dropped = 0
        self._deliveries_dropped = 0
        self._listener_failures = 0
        self._failures: Deque[ListenerFailure] = deque(maxlen=failure_history_size)

        self.logger.info("PortfolioEventBus initialized", extra={
            "max_queue_size": max_queue_size,
            "failure_history_size": failure_history_size,
            "listener_queue_size": self._listener_queue_size,
        })

    @classmethod
    def from_config(cls, config) -> "PortfolioEventBus":
        """Build from an EventBusConfig."""
        return cls(
            max_queue_size=config.max_queue_size,
            failure_history_size=config.failure_history_size,
            listener_queue_size=config.listener_queue_size,
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, event_type: Type, listener: Listener) -> None:
        """
        Register listener for event type.

        Example:
            def on_update(event: MarketDataUpdate):
                print(f"{event.symbol} {event.direction.value}")

            bus.subscribe(MarketDataUpdate, on_update)
        """
        if not callable(listener):
            raise TypeError(f"Listener must be callable, got {listener!r}")

        with self._listeners_lock:
            current = self._listeners.get(event_type, ())
            self._listeners[event_type] = current + (listener,)
            count = len(self._listeners[event_type])

            worker = self._workers.get(listener)
            if worker is None:
                worker = _ListenerWorker(self, listener, self._listener_queue_size)
                self._workers[listener] = worker
            worker.subscriptions += 1
            if self._running:
                worker.start()

        self.logger.debug(f"Listener registered for {event_type.__name__}", extra={
            "event_type": event_type.__name__,
            "listener": _listener_name(listener),
            "listener_count": count,
        })

    def unsubscribe(self, event_type: Type, listener: Listener) -> bool:
        """
        Remove the first registration of listener for event type.

        Events already handed to the listener are still delivered.

        Returns:
            True if the listener was registered
        """
        with self._listeners_lock:
            current = list(self._listeners.get(event_type, ()))
            if listener not in current:
                return False
            current.remove(listener)
            if current:
                self._listeners[event_type] = tuple(current)
            else:
                del self._listeners[event_type]

            worker = self._workers[listener]
            worker.subscriptions -= 1
            if worker.subscriptions == 0:
                del self._workers[listener]
                worker.stop()
                self._retired.append(worker)

        self.logger.debug(f"Listener removed for {event_type.__name__}", extra={
            "event_type": event_type.__name__,
            "listener": _listener_name(listener),
        })
        return True

    def listeners(self, event_type: Type) -> Tuple[Listener, ...]:
        return self._listeners.get(event_type, ())

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, event: object) -> bool:
        """
        Queue event for delivery.

        Thread-safe. Returns as soon as the event is queued. If the queue
        is full the event is dropped and counted.

        Returns:
            True if queued, False if dropped

        Raises:
            RuntimeError: If the bus is not running
        """
        with self._publish_lock:
            if not self._running:
                raise RuntimeError("Event bus is not running. Call start() first.")

            self._begin()
            try:
                self._queue.put_nowait(event)
            except queue.Full:
                self._finish()
                queued = False
            else:
                queued = True

        if not queued:
            with self._stats_lock:
                self._events_dropped += 1
                dropped = self._events_dropped
            self.logger.warning(
                "Event queue full, dropping event (dropped=%d)",
                dropped,
                extra={
                    "event_type": type(event).__name__,
                    "queue_size": self._queue.qsize(),
                    "events_dropped": dropped,
                },
            )
            return False

        with self._stats_lock:
            self._events_published += 1
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """
        Start the dispatcher and listener worker threads.

        Raises:
            RuntimeError: If already running
        """
        with self._lifecycle_lock:
            if self._running:
                raise RuntimeError("Event bus already running")

            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._process_events,
                name="PortfolioEventBus",
                daemon=self._daemon,
            )
            with self._listeners_lock:
                with self._publish_lock:
                    self._running = True
                for worker in self._workers.values():
                    worker.start()
            self._thread.start()

        self.logger.info("PortfolioEventBus started", extra={
            "thread_id": self._thread.ident,
            "registered_event_types": len(self._listeners),
            "listener_workers": len(self._workers),
        })

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop accepting events, deliver what is queued, stop every thread.

        Args:
            timeout: Max seconds to wait for each thread to drain

        Raises:
            RuntimeError: If not running
        """
        with self._lifecycle_lock:
            if not self._running:
                raise RuntimeError("Event bus not running")

            self.logger.info("Stopping PortfolioEventBus...", extra={
                "queue_size": self._queue.qsize(),
                "events_processed": self._events_processed,
            })

            # No publish() can slip an event in after this point
            with self._publish_lock:
                self._running = False
            self._stop_event.set()

            thread = self._thread
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout=timeout)
                if thread.is_alive():
                    self.logger.warning(
                        "Event bus thread did not stop cleanly",
                        extra={"timeout": timeout}
                    )
                else:
                    self._thread = None

            with self._listeners_lock:
                workers = list(self._workers.values()) + self._retired
                self._retired = []
            for worker in workers:
                worker.stop()
            for worker in workers:
                if not worker.join(timeout):
                    self.logger.warning(
                        "Listener worker did not stop cleanly",
                        extra={
                            "listener": worker.name,
                            "backlog": worker.backlog(),
                            "timeout": timeout,
                        }
                    )

        self.logger.info("PortfolioEventBus stopped", extra={
            "events_processed": self._events_processed,
            "listener_failures": self._listener_failures,
            "queue_remaining": self._queue.qsize(),
        })

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every queued event has been delivered to every listener.

        Must not be called from a listener (its worker would wait on
        itself).

        Returns:
            True if idle, False if the timeout expired first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._pending:
                if deadline is None:
                    self._idle.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def _begin(self) -> None:
        with self._idle:
            self._pending += 1

    def _finish(self) -> None:
        with self._idle:
            self._pending -= 1
            if self._pending == 0:
                self._idle.notify_all()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _process_events(self) -> None:
        """
        Event processing loop (runs in dedicated thread).

        Hands events to listener workers FIFO until stop signal received,
        then drains.
        """
        self.logger.debug("Event processing thread started")

        while not self._stop_event.is_set():
            try:
                event = self._queue.get(block=True, timeout=0.05)
            except queue.Empty:
                continue
            self._deliver(event)

        drained = 0
        while True:
            try:
                event = self._queue.get(block=False)
            except queue.Empty:
                break
            self._deliver(event)
            drained += 1

        self.logger.debug(f"Event processing thread stopped (drained {drained} events)")

    def _deliver(self, event: object) -> None:
        try:
            self._dispatch_event(event)
        except Exception as e:
            self.logger.error(
                "Unexpected error in event processing loop",
                extra={"error": str(e)},
                exc_info=True
            )
        finally:
            with self._stats_lock:
                self._events_processed += 1
            self._finish()

    def _dispatch_event(self, event: object) -> None:
        """
        Hand the event to the worker of every listener of its type, in
        subscription order.

        A listener whose queue is full misses the event; the others don't.
        """
        event_type = type(event)
        dropped_for: List[str] = []

        with self._listeners_lock:
            listeners = self._listeners.get(event_type, ())
            for listener in listeners:
                worker = self._workers[listener]
                self._begin()
                if not worker.submit(event):
                    self._finish()
                    dropped_for.append(worker.name)

        if not listeners:
            self.logger.debug(f"No listeners for {event_type.__name__}", extra={
                "event_type": event_type.__name__
            })
            return

        if dropped_for:
            with self._stats_lock:
                self._deliveries_dropped += len(dropped_for)
                dropped = self._deliveries_dropped
            for name in dropped_for:
                self.logger.warning(
                    f"Listener queue full, dropping {event_type.__name__} for {name}",
                    extra={
                        "event_type": event_type.__name__,
                        "listener": name,
                        "deliveries_dropped": dropped,
                    },
                )

    def _call_listener(self, listener: Listener, event: object) -> None:
        """Run one listener on its worker. Failures are logged and recorded."""
        try:
            listener(event)
        except Exception as e:
            failure = ListenerFailure(
                event_type=type(event).__name__,
                listener=_listener_name(listener),
                error_type=type(e).__name__,
                error=str(e),
            )
            with self._stats_lock:
                self._listener_failures += 1
                self._failures.append(failure)

            self.logger.error(
                f"Listener failed for {failure.event_type}",
                extra={
                    "event_type": failure.event_type,
                    "listener": failure.listener,
                    "error_type": failure.error_type,
                    "error": failure.error,
                },
                exc_info=True
            )
        finally:
            self._finish()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def failures(self) -> List[ListenerFailure]:
        """Most recent listener failures, oldest first."""
        with self._stats_lock:
            return list(self._failures)

    def get_stats(self) -> Dict:
        """
        Get event bus statistics.

        Returns:
            Dict with published, processed, dropped, failures, queue size
        """
        with self._stats_lock:
            return {
                "events_published": self._events_published,
                "events_processed": self._events_processed,
                "events_dropped": self._events_dropped,
                "deliveries_dropped": self._deliveries_dropped,
                "listener_failures": self._listener_failures,
                "queue_size": self._queue.qsize(),
                "running": self._running,
                "registered_event_types": len(self._listeners),
                "listener_workers": len(self._workers),
            }

    def __del__(self):
        """Best-effort cleanup if user forgot to call stop()."""
        try:
            if getattr(self, "_running", False):
                self.stop(timeout=0.1)
        except Exception:
            pass

    def __enter__(self):
        """Context manager support."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager support."""
        self.stop()
