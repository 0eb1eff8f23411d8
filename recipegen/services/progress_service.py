"""Live progress for running batches.

Each batch owns one ProgressState, kept in a keyed store that outlives any
client connection. The batch's worker is the only writer; any number of
stream subscribers read snapshots and follow the ordered event log. Every
write bumps ``seq`` and appends exactly one event, and the snapshot records
the seq it reflects, so a subscriber that starts from a snapshot and then
reads events after that seq sees every update once.
"""
import copy
import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field, fields

from recipegen import extensions
from recipegen.errors import BatchClosedError

logger = logging.getLogger(__name__)

AGENTS = ("concept", "validator", "artist", "storage", "coordinator")
AGENT_STATES = {"idle", "working", "complete", "error"}
TERMINAL_EVENTS = {"complete", "complete_with_errors", "failed"}


@dataclass
class ProgressState:
    batch_id: str
    total_requested: int
    total_chunks: int = 0
    current_chunk: int = 0
    chunks_finished: int = 0
    recipes_completed: int = 0
    images_generated: int = 0
    images_failed: int = 0
    phase: str = "queued"
    status: str = "running"
    message: str = ""
    errors: list = field(default_factory=list)
    agent_status: dict = field(default_factory=lambda: {a: "idle" for a in AGENTS})
    started_at: float = field(default_factory=time.time)
    seq: int = 0

    @property
    def is_terminal(self):
        return self.status in TERMINAL_EVENTS

    @property
    def estimated_time_remaining(self):
        """Seconds left, extrapolated from the average chunk duration."""
        if self.is_terminal or not self.chunks_finished:
            return None
        per_chunk = (time.time() - self.started_at) / self.chunks_finished
        remaining = max(self.total_chunks - self.chunks_finished, 0)
        return round(per_chunk * remaining)

    def progress_event(self):
        return {
            "type": "progress",
            "batchId": self.batch_id,
            "recipesCompleted": self.recipes_completed,
            "totalRequested": self.total_requested,
            "imagesGenerated": self.images_generated,
            "imagesFailed": self.images_failed,
            "phase": self.phase,
            "status": self.status,
            "currentChunk": self.current_chunk,
            "totalChunks": self.total_chunks,
            "estimatedTimeRemaining": self.estimated_time_remaining,
            "agentStatus": dict(self.agent_status),
            "seq": self.seq,
        }

    def terminal_event(self):
        return {
            "type": self.status,
            "batchId": self.batch_id,
            "recipesCompleted": self.recipes_completed,
            "totalRequested": self.total_requested,
            "imagesGenerated": self.images_generated,
            "imagesFailed": self.images_failed,
            "message": self.message,
            "errors": list(self.errors),
            "seq": self.seq,
        }

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class MemoryProgressStore:
    """Process-local store, used when Redis is not configured."""

    def __init__(self, ttl=86400):
        self.ttl = ttl
        self._cond = threading.Condition()
        self._states = {}
        self._events = {}
        self._finished_at = {}

    def save(self, state, event):
        with self._cond:
            self._states[state.batch_id] = copy.deepcopy(state)
            self._events.setdefault(state.batch_id, []).append(event)
            if state.is_terminal:
                self._finished_at[state.batch_id] = time.monotonic()
            self._purge_expired()
            self._cond.notify_all()

    def load(self, batch_id):
        with self._cond:
            state = self._states.get(batch_id)
            return copy.deepcopy(state) if state else None

    def events_since(self, batch_id, seq, timeout=0):
        with self._cond:
            events = self._events.get(batch_id, [])[seq:]
            if not events and timeout:
                self._cond.wait(timeout)
                events = self._events.get(batch_id, [])[seq:]
            return list(events)

    def _purge_expired(self):
        cutoff = time.monotonic() - self.ttl
        for batch_id, finished in list(self._finished_at.items()):
            if finished < cutoff:
                self._states.pop(batch_id, None)
                self._events.pop(batch_id, None)
                del self._finished_at[batch_id]


class RedisProgressStore:
    """Shared store so web processes can follow batches run by RQ workers."""

    def __init__(self, client, ttl=86400, prefix="progress"):
        self.client = client
        self.ttl = ttl
        self.prefix = prefix

    def _state_key(self, batch_id):
        return f"{self.prefix}:{batch_id}"

    def _events_key(self, batch_id):
        return f"{self.prefix}:{batch_id}:events"

    def save(self, state, event):
        state_key = self._state_key(state.batch_id)
        events_key = self._events_key(state.batch_id)
        pipe = self.client.pipeline(transaction=True)
        pipe.set(state_key, json.dumps(state.to_dict()))
        pipe.rpush(events_key, json.dumps(event))
        pipe.expire(state_key, self.ttl)
        pipe.expire(events_key, self.ttl)
        pipe.execute()

    def load(self, batch_id):
        raw = self.client.get(self._state_key(batch_id))
        if raw is None:
            return None
        return ProgressState.from_dict(json.loads(raw))

    def events_since(self, batch_id, seq, timeout=0):
        # Event with seq n sits at list index n - 1
        key = self._events_key(batch_id)
        raw = self.client.lrange(key, seq, -1)
        if not raw and timeout:
            time.sleep(timeout)
            raw = self.client.lrange(key, seq, -1)
        return [json.loads(item) for item in raw]


class ProgressBroadcaster:
    """Owns every ProgressState mutation and the subscriber view of it."""

    def __init__(self, store):
        self.store = store
        self._locks = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, batch_id):
        with self._locks_guard:
            return self._locks.setdefault(batch_id, threading.Lock())

    def _publish(self, state, build_event):
        state.seq += 1
        event = build_event(state)
        self.store.save(state, event)
        return event

    def _mutate(self, batch_id, change, build_event=ProgressState.progress_event):
        with self._lock_for(batch_id):
            state = self.store.load(batch_id)
            if state is None:
                raise KeyError(f"No progress state for batch {batch_id}")
            if state.is_terminal:
                raise BatchClosedError(f"Batch {batch_id} is already {state.status}")
            change(state)
            return self._publish(state, build_event)

    def start(self, batch_id, total_requested, total_chunks):
        state = ProgressState(
            batch_id=batch_id,
            total_requested=total_requested,
            total_chunks=total_chunks,
        )
        with self._lock_for(batch_id):
            self._publish(state, ProgressState.progress_event)
        return state

    def advance(
        self,
        batch_id,
        recipes=0,
        images=0,
        images_failed=0,
        phase=None,
        chunk=None,
        agents=None,
    ):
        """Apply counter deltas and publish a progress event."""
        if min(recipes, images, images_failed) < 0:
            raise ValueError("Progress counters only move forward")
        for agent, agent_state in (agents or {}).items():
            if agent not in AGENTS or agent_state not in AGENT_STATES:
                raise ValueError(f"Unknown agent status {agent}={agent_state}")

        def change(state):
            state.recipes_completed += recipes
            state.images_generated += images
            state.images_failed += images_failed
            if phase:
                state.phase = phase
            if chunk is not None:
                state.current_chunk = chunk
            state.agent_status.update(agents or {})

        return self._mutate(batch_id, change)

    def chunk_finished(self, batch_id):
        def change(state):
            state.chunks_finished += 1

        return self._mutate(batch_id, change)

    def error(self, batch_id, error, phase, chunk_index=None):
        """Publish a non-fatal, chunk-scoped error."""
        message = str(error)

        def change(state):
            state.errors.append(
                {"error": message, "phase": phase, "chunkIndex": chunk_index}
            )

        def build(state):
            return {
                "type": "error",
                "batchId": state.batch_id,
                "error": message,
                "phase": phase,
                "chunkIndex": chunk_index,
                "seq": state.seq,
            }

        return self._mutate(batch_id, change, build)

    def finish(self, batch_id, status, recipes_completed=None, message=""):
        if status not in TERMINAL_EVENTS:
            raise ValueError(f"Not a terminal status: {status}")

        def change(state):
            state.status = status
            state.phase = status
            state.message = message
            if recipes_completed is not None:
                state.recipes_completed = max(state.recipes_completed, recipes_completed)
            for agent, agent_state in state.agent_status.items():
                if agent_state == "working":
                    state.agent_status[agent] = "complete"

        event = self._mutate(batch_id, change, ProgressState.terminal_event)
        # No writes follow a terminal event
        with self._locks_guard:
            self._locks.pop(batch_id, None)
        return event

    def snapshot(self, batch_id):
        return self.store.load(batch_id)

    def subscribe(self, batch_id, poll_interval=0.3, keepalive=15.0):
        """Yield the current state, then live events until a terminal one.

        Yields ``None`` when nothing happened for ``keepalive`` seconds so the
        caller can keep the connection open.
        """
        state = self.store.load(batch_id)
        if state is None:
            return
        yield state.progress_event()
        if state.is_terminal:
            yield state.terminal_event()
            return

        seq = state.seq
        idle_since = time.monotonic()
        while True:
            events = self.store.events_since(batch_id, seq, timeout=poll_interval)
            if events:
                for event in events:
                    seq = event["seq"]
                    yield event
                    if event["type"] in TERMINAL_EVENTS:
                        return
                idle_since = time.monotonic()
            elif time.monotonic() - idle_since >= keepalive:
                if self.store.load(batch_id) is None:
                    logger.warning("Progress for batch %s expired mid-stream", batch_id)
                    return
                yield None
                idle_since = time.monotonic()


_broadcaster = None


def broadcaster():
    """Broadcaster bound to the store chosen in ``init_redis``."""
    global _broadcaster
    store = extensions.progress_store
    if _broadcaster is None or _broadcaster.store is not store:
        _broadcaster = ProgressBroadcaster(store)
    return _broadcaster
