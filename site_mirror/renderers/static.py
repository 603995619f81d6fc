"""Raw markup fetch, no script execution."""

from typing import Optional

from .base import BaseRenderer, RenderProgress, RenderResult


class StaticRenderer(BaseRenderer):
    name = "no-script-fetch"

    def render(self, url: str, on_progress: Optional[RenderProgress] = None) -> RenderResult:
        html = self.downloader.fetch_text(url)
        if on_progress:
            on_progress(1.0)
        return RenderResult(html=html)
