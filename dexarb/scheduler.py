# dexarb/scheduler.py
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set

TriggerFn = Callable[[str], Awaitable[None]]


class DebounceState(Enum):
    IDLE = "IDLE"
    PENDING = "PENDING"


class Debouncer:
    """
    Per-source timer: IDLE --notify--> PENDING(deadline) --notify--> PENDING(later deadline)
    PENDING --expiry--> fire once, back to IDLE.
    """
    def __init__(self, source: str, delay: float, on_fire: TriggerFn):
        self.source = source
        self.delay = delay
        self.on_fire = on_fire
        self.state = DebounceState.IDLE
        self.deadline: Optional[float] = None
        self.fired = 0
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    def notify(self):
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self.deadline = loop.time() + self.delay
        self.state = DebounceState.PENDING
        self._handle = loop.call_at(self.deadline, self._expire)

    def _expire(self):
        self._handle = None
        self.deadline = None
        self.state = DebounceState.IDLE
        self.fired += 1
        task = asyncio.ensure_future(self.on_fire(self.source))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.deadline = None
        self.state = DebounceState.IDLE
        for task in list(self._tasks):
            task.cancel()


class Scheduler:
    """
    Turns bursty venue change notifications into evaluation triggers and keeps
    the display ticking between them. Triggers from both venues race into the
    engine's single-flight guard; the loser is dropped there.
    """
    def __init__(
        self,
        sources: Iterable[str],
        on_trigger: TriggerFn,
        logger: logging.Logger,
        debounce_ms: int = 1000,
        render_interval_ms: int = 1000,
        on_render: Optional[Callable[[], None]] = None,
    ):
        self.logger = logger
        self.on_trigger = on_trigger
        self.on_render = on_render
        self.render_interval = render_interval_ms / 1000
        self.debouncers: Dict[str, Debouncer] = {
            s: Debouncer(s, debounce_ms / 1000, on_trigger) for s in sources
        }
        self.running = False
        self.tasks: List[asyncio.Task] = []

    def notify(self, source: str):
        debouncer = self.debouncers.get(source)
        if debouncer is None:
            self.logger.warning(f"Change notification from unknown source '{source}' ignored")
            return
        debouncer.notify()

    async def start(self):
        self.running = True
        # one immediate evaluation per source, as if each had just changed
        self.tasks = [asyncio.create_task(self.on_trigger(s)) for s in self.debouncers]
        if self.on_render is not None:
            self.tasks.append(asyncio.create_task(self._render_loop()))

    async def _render_loop(self):
        while self.running:
            try:
                self.on_render()
            except Exception:
                self.logger.exception("Render tick failed")
            await asyncio.sleep(self.render_interval)

    async def shutdown(self):
        self.running = False
        for d in self.debouncers.values():
            d.cancel()
        for t in self.tasks:
            t.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []
