"""
Streaming ingestion: turns a backend event stream into ordered channel actions.

A worker thread owns one StreamIngestor per assistant turn. The ingestor never
touches the conversation; it only puts actions on the channel, which the
session engine drains on the UI thread:

    Idle -> Started -> Receiving* -> Completed | Failed

Each StreamPartial carries the full text accumulated so far. Terminal states
are absorbing.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from ait.backend import EventKind, StreamEvent, completed_events
from ait.globals import log_exception

logger = logging.getLogger(__name__)

CANCELLED_REASON = "Response cancelled by user."


class StreamState(Enum):
    IDLE = "idle"
    STARTED = "started"
    RECEIVING = "receiving"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class StreamStart:
    turn_id: int


@dataclass(frozen=True)
class StreamPartial:
    turn_id: int
    text: str


@dataclass(frozen=True)
class StreamComplete:
    turn_id: int
    text: str


@dataclass(frozen=True)
class StreamError:
    turn_id: int
    reason: str


Action = StreamStart | StreamPartial | StreamComplete | StreamError


class StreamIngestor:
    """State machine for a single assistant turn."""

    def __init__(
        self,
        turn_id: int,
        send: Callable[[Action], None],
        cumulative: bool = False,
        cancel: threading.Event | None = None,
    ):
        self.turn_id = turn_id
        self.send = send
        # True when the backend sends accumulated text instead of deltas
        self.cumulative = cumulative
        self.cancel = cancel
        self.state = StreamState.IDLE
        self.buffer = ""

    @property
    def terminal(self) -> bool:
        return self.state in (StreamState.COMPLETED, StreamState.FAILED)

    def start(self):
        if self.state is StreamState.IDLE:
            self.state = StreamState.STARTED
            self.send(StreamStart(self.turn_id))

    def receive(self, text: str):
        if self.terminal or not text:
            return
        self.start()
        self.buffer = text if self.cumulative else self.buffer + text
        self.state = StreamState.RECEIVING
        self.send(StreamPartial(self.turn_id, self.buffer))

    def complete(self):
        if self.terminal:
            return
        self.start()
        self.state = StreamState.COMPLETED
        self.send(StreamComplete(self.turn_id, self.buffer))

    def fail(self, reason: str):
        if self.terminal:
            return
        self.state = StreamState.FAILED
        self.send(StreamError(self.turn_id, reason))

    def feed(self, event: StreamEvent):
        """Apply one backend event."""
        if self.terminal:
            logger.debug(f"Turn {self.turn_id}: ignoring {event.kind.value} after end")
            return
        if event.kind is EventKind.START:
            self.start()
        elif event.kind in (EventKind.CHUNK, EventKind.REASONING_CHUNK):
            # Reasoning and content share the one visible buffer
            self.receive(event.text)
        elif event.kind is EventKind.END:
            self.complete()
        elif event.kind is EventKind.ERROR:
            self.fail(event.text or "Unknown stream error.")

    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    def consume(self, events: Iterable[StreamEvent]):
        """Drive the state machine until the stream ends or fails."""
        try:
            for event in events:
                if self.cancelled():
                    self.fail(CANCELLED_REASON)
                    return
                self.feed(event)
                if self.terminal:
                    return
        except Exception as e:
            log_exception(e, f"Error while streaming turn {self.turn_id}")
            self.fail(f"Stream error: {e}")
            return
        if self.cancelled():
            self.fail(CANCELLED_REASON)
        else:
            # Exhaustion without an explicit end still completes the turn
            self.complete()


def run_turn(
    backend,
    request: dict,
    turn_id: int,
    channel: queue.Queue,
    cancel: threading.Event | None = None,
    streaming: bool = True,
):
    """Worker body: call the backend and report every transition on `channel`."""
    ingestor = StreamIngestor(
        turn_id,
        channel.put,
        cumulative=getattr(backend, "cumulative", False),
        cancel=cancel,
    )
    try:
        if streaming:
            events = backend.open_stream(request)
        else:
            events = completed_events(backend.complete(request))
    except Exception as e:
        log_exception(e, f"Error in run_turn() - model: {request.get('model')}")
        ingestor.fail(f"API Error: {e}")
        return
    ingestor.consume(events)


def spawn_turn_worker(
    backend,
    request: dict,
    turn_id: int,
    channel: queue.Queue,
    cancel: threading.Event | None = None,
    streaming: bool = True,
) -> threading.Thread:
    """Starts a daemon worker; one left running at exit is simply abandoned."""
    worker = threading.Thread(
        target=run_turn,
        args=(backend, request, turn_id, channel, cancel, streaming),
        name=f"ait-turn-{turn_id}",
        daemon=True,
    )
    worker.start()
    return worker
