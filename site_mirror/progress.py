"""Progress accounting and delivery.

Each phase of a run owns a fixed percentage band. Bands are laid out in run
order, never overlap, and the run ends at exactly 100. Asset phases split
what is left after document acquisition by fixed weights, so the bar moves at
the same place whichever rendering strategy is used.
"""

import logging
import queue
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .models import Strategy

logger = logging.getLogger("site_mirror")


class Phase(str, Enum):
    DOCUMENT = "document"
    RENDER = "render"
    FONTS = "fonts"
    ICONS = "icons"
    STYLESHEETS = "stylesheets"
    SCRIPTS = "scripts"
    IMAGES = "images"
    INLINE_STYLES = "inline_styles"
    FINALIZE = "finalize"
    CRAWL = "crawl"
    COMPLETE = "complete"


STEP_LABELS = {
    Phase.DOCUMENT: "Fetching page (static mode)",
    Phase.RENDER: "Rendering page...",
    Phase.FONTS: "Downloading fonts",
    Phase.ICONS: "Downloading icons",
    Phase.STYLESHEETS: "Downloading CSS files",
    Phase.SCRIPTS: "Downloading JavaScript files",
    Phase.IMAGES: "Downloading images",
    Phase.INLINE_STYLES: "Rewriting inline styles",
    Phase.FINALIZE: "Finalizing HTML",
    Phase.CRAWL: "Crawling sub-pages",
    Phase.COMPLETE: "Mirror complete",
}

ASSET_WEIGHTS = [
    (Phase.FONTS, 5),
    (Phase.ICONS, 5),
    (Phase.STYLESHEETS, 15),
    (Phase.SCRIPTS, 20),
    (Phase.IMAGES, 25),
]
ASSET_END = 85
RENDER_START = 5
RENDER_END = 15
RENDER_CAP = 0.95

TAIL_BANDS = {
    Phase.INLINE_STYLES: (85, 88),
    Phase.FINALIZE: (88, 90),
    Phase.CRAWL: (90, 98),
    Phase.COMPLETE: (100, 100),
}


def build_bands(strategy: Strategy) -> Dict[Phase, Tuple[int, int]]:
    bands: Dict[Phase, Tuple[int, int]] = {}
    if strategy == Strategy.BROWSER_RENDER:
        bands[Phase.DOCUMENT] = (0, RENDER_START)
        bands[Phase.RENDER] = (RENDER_START, RENDER_END)
        start = RENDER_END
    else:
        bands[Phase.DOCUMENT] = (0, 20)
        start = 20

    span = ASSET_END - start
    total_weight = sum(w for _, w in ASSET_WEIGHTS)
    cumulative = 0
    for phase, weight in ASSET_WEIGHTS:
        lo = start + span * cumulative // total_weight
        cumulative += weight
        hi = start + span * cumulative // total_weight
        bands[phase] = (lo, hi)

    bands.update(TAIL_BANDS)
    return bands


class ProgressAccountant:
    """Turns (phase, done, total) into a non-decreasing percentage."""

    def __init__(self, strategy: Strategy):
        self.strategy = strategy
        self.bands = build_bands(strategy)
        self.percent = 0

    def _emit(self, value: float) -> int:
        self.percent = max(self.percent, min(100, int(value)))
        return self.percent

    def band(self, phase: Phase) -> Tuple[int, int]:
        return self.bands[phase]

    def start(self, phase: Phase) -> int:
        return self._emit(self.bands[phase][0])

    def end(self, phase: Phase) -> int:
        return self._emit(self.bands[phase][1])

    def at(self, value: int) -> int:
        return self._emit(value)

    def advance(self, phase: Phase, done: int, total: int) -> int:
        lo, hi = self.bands[phase]
        if total <= 0:
            return self._emit(hi)
        fraction = min(done, total) / total
        return self._emit(lo + (hi - lo) * fraction)

    def render(self, fraction: float) -> int:
        """Map observed/issued network responses during page load to the render band."""
        lo, hi = self.bands.get(Phase.RENDER, (RENDER_START, RENDER_END))
        fraction = max(0.0, min(fraction, 1.0))
        return self._emit(lo + (hi - lo) * fraction)

    def complete(self) -> int:
        return self._emit(100)


@dataclass
class ProgressEvent:
    job_id: str
    percent: int
    step: str
    current_path: Optional[str] = None
    status: str = "processing"

    def to_dict(self) -> dict:
        return asdict(self)


class ProgressChannel:
    """Fan-out of progress events to subscriber queues.

    publish() never blocks: events for a full queue are dropped, and with no
    subscribers they go nowhere.
    """

    def __init__(self, maxsize: int = 1000):
        self.maxsize = maxsize
        self._subscribers: List[Tuple[Optional[str], queue.Queue]] = []
        self._lock = threading.Lock()

    def subscribe(self, job_id: Optional[str] = None) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self.maxsize)
        with self._lock:
            self._subscribers.append((job_id, q))
        return q

    def unsubscribe(self, q: queue.Queue):
        with self._lock:
            self._subscribers = [(j, s) for j, s in self._subscribers if s is not q]

    def publish(self, event: ProgressEvent):
        with self._lock:
            targets = [q for j, q in self._subscribers if j is None or j == event.job_id]
        for q in targets:
            try:
                q.put_nowait(event)
            except queue.Full:
                logger.debug(f"[{event.job_id}] Progress subscriber full, dropping event")
