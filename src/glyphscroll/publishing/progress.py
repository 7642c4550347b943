"""
Progress reporting and the publish state machine.

A ProgressChannel holds the latest snapshot and fans it out to callbacks
and async subscribers. The state machine only tracks stages; counting
happens in the publisher.
"""

import asyncio
import logging
import threading
from typing import AsyncIterator, Callable, Dict, FrozenSet, Iterable, List, Literal, Optional, Tuple

from glyphscroll.core.contracts import ProgressSnapshot, PublishStage
from glyphscroll.core.errors import InvalidTransitionError

logger = logging.getLogger(__name__)

GRID_THRESHOLD = 50

ProgressCallback = Callable[[ProgressSnapshot], None]


def suggest_display(total_chunks: int) -> Literal["grid", "bar"]:
    """A glyph grid reads well for short stories, a bar for long ones."""
    return "grid" if total_chunks < GRID_THRESHOLD else "bar"


def make_snapshot(stage: str, current: int, total: int, message: str = "") -> ProgressSnapshot:
    percent = round(100.0 * current / total, 2) if total > 0 else 0.0
    return ProgressSnapshot(stage=stage, current=current, total=total, percent=percent, message=message)


class ProgressChannel:
    """
    Latest-value progress broadcaster.

    ``publish`` may be called from any thread. Async subscribers created
    with ``updates()`` receive every snapshot published after they
    subscribed, ending once a terminal stage is seen.
    """

    def __init__(self, terminal_stages: Iterable = ()):
        self._lock = threading.Lock()
        self._latest: Optional[ProgressSnapshot] = None
        self._callbacks: List[ProgressCallback] = []
        self._queues: List[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = []
        self._terminal = frozenset(_stage_value(s) for s in terminal_stages) or frozenset(
            {PublishStage.COMPLETED.value, PublishStage.FAILED.value}
        )

    @property
    def latest(self) -> Optional[ProgressSnapshot]:
        with self._lock:
            return self._latest

    def subscribe(self, callback: ProgressCallback):
        with self._lock:
            self._callbacks.append(callback)

    def unsubscribe(self, callback: ProgressCallback):
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def publish(self, snapshot: ProgressSnapshot):
        with self._lock:
            self._latest = snapshot
            callbacks = list(self._callbacks)
            queues = list(self._queues)
        for loop, queue in queues:
            if not loop.is_closed():
                loop.call_soon_threadsafe(queue.put_nowait, snapshot)
        for callback in callbacks:
            try:
                callback(snapshot)
            except Exception as e:
                # A broken display must not break a publish
                logger.warning(f"Progress callback failed: {e}")

    async def updates(self) -> AsyncIterator[ProgressSnapshot]:
        """Yield snapshots until a terminal stage."""
        entry = (asyncio.get_running_loop(), asyncio.Queue())
        queue = entry[1]
        with self._lock:
            self._queues.append(entry)
        try:
            while True:
                snapshot = await queue.get()
                yield snapshot
                if _stage_value(snapshot.stage) in self._terminal:
                    return
        finally:
            with self._lock:
                self._queues.remove(entry)


def _stage_value(stage) -> str:
    return stage.value if hasattr(stage, "value") else str(stage)


_TRANSITIONS: Dict[PublishStage, FrozenSet[PublishStage]] = {
    PublishStage.PREPARING: frozenset({PublishStage.PROCESSING}),
    PublishStage.PROCESSING: frozenset({PublishStage.PUBLISHING_HASHLIST}),
    PublishStage.PUBLISHING_HASHLIST: frozenset({PublishStage.PUBLISHING_CONTENT}),
    PublishStage.PUBLISHING_CONTENT: frozenset({PublishStage.CREATING_ROOT}),
    PublishStage.CREATING_ROOT: frozenset({PublishStage.COMPLETED}),
    PublishStage.COMPLETED: frozenset(),
    PublishStage.FAILED: frozenset(),
}


class PublishStateMachine:
    """Tracks one publish through its stages."""

    def __init__(self, story_id: str):
        self.story_id = story_id
        self.stage = PublishStage.PREPARING
        self.history: List[PublishStage] = [self.stage]

    @property
    def is_terminal(self) -> bool:
        return self.stage in (PublishStage.COMPLETED, PublishStage.FAILED)

    def can_advance(self, stage: PublishStage) -> bool:
        if stage == PublishStage.FAILED:
            return not self.is_terminal
        return stage in _TRANSITIONS[self.stage]

    def advance(self, stage: PublishStage):
        """
        Move to ``stage``.

        Raises:
            InvalidTransitionError: If the move is not allowed from the current stage
        """
        stage = PublishStage(stage)
        if not self.can_advance(stage):
            raise InvalidTransitionError(
                f"Cannot move from {self.stage.value} to {stage.value}",
                context={"story_id": self.story_id},
            )
        logger.info(f"{self.story_id}: {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.history.append(stage)

    def fail(self):
        """Move to failed unless already terminal."""
        if not self.is_terminal:
            self.advance(PublishStage.FAILED)
