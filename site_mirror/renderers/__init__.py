"""Renderer registry."""

from ..models import Strategy
from .base import BaseRenderer, RenderResult
from .browser import BrowserRenderer
from .static import StaticRenderer

ALL_RENDERERS = {
    Strategy.NO_SCRIPT_FETCH: StaticRenderer,
    Strategy.BROWSER_RENDER: BrowserRenderer,
}


def get_renderer(strategy, config, downloader) -> BaseRenderer:
    return ALL_RENDERERS[Strategy(strategy)](config, downloader)
