"""Abstract base class for all document renderers."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..config import AppConfig
from ..downloader import Downloader

logger = logging.getLogger("site_mirror")

# Receives observed/issued network activity as a fraction in [0, 1]
RenderProgress = Callable[[float], None]


@dataclass
class RenderResult:
    html: str
    resources: List[str] = field(default_factory=list)


class BaseRenderer(ABC):
    name: str = ""

    def __init__(self, config: AppConfig, downloader: Downloader):
        self.config = config
        self.downloader = downloader

    @abstractmethod
    def render(self, url: str, on_progress: Optional[RenderProgress] = None) -> RenderResult:
        """Load url and return its markup. Raises when the page cannot be obtained."""
        ...

    def close(self):
        pass
