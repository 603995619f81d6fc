import os
import uuid
from typing import Callable, Dict, List, Tuple, Union

import httpx
import pytest

from site_mirror.config import AppConfig, DownloadConfig
from site_mirror.db import Database
from site_mirror.mirror import MirrorOrchestrator
from site_mirror.progress import ProgressChannel
from site_mirror.state import JobStateMachine


class FakeSite:
    """In-memory web server behind an httpx.MockTransport."""

    def __init__(self):
        self.pages: Dict[str, Tuple[int, bytes, str]] = {}
        self.hooks: Dict[str, Callable[[], None]] = {}
        self.requests: List[str] = []

    def add(self, url: str, body: Union[str, bytes], status: int = 200,
            content_type: str = "text/html"):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.pages[url] = (status, body, content_type)

    def count(self, url: str) -> int:
        return self.requests.count(url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        hook = self.hooks.get(url)
        if hook:
            hook()
        if url not in self.pages:
            return httpx.Response(404, text="not found")
        status, body, content_type = self.pages[url]
        return httpx.Response(status, content=body, headers={"content-type": content_type})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        output_dir=str(tmp_path / "mirrors"),
        db_path=str(tmp_path / "mirror.db"),
        log_dir=str(tmp_path / "logs"),
        max_workers=2,
        download=DownloadConfig(max_retries=1, backoff_factor=0),
    )


@pytest.fixture
def db(config):
    return Database(config.db_path)


@pytest.fixture
def state(db):
    return JobStateMachine(db)


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def channel():
    return ProgressChannel()


@pytest.fixture
def orchestrator(config, db, state, site, channel):
    return MirrorOrchestrator(config, db, state, channel, transport=site.transport)


@pytest.fixture
def make_job(config, db):
    def _make(url: str = "https://example.com/", strategy: str = "no-script-fetch",
              crawl_depth: int = 0) -> str:
        job_id = uuid.uuid4().hex
        output_dir = os.path.join(config.output_dir, job_id)
        os.makedirs(output_dir, exist_ok=True)
        return db.create_project(url, "example.com", strategy, crawl_depth,
                                 output_dir=output_dir, project_id=job_id)
    return _make
