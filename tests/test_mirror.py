import os
import queue

import pytest

from site_mirror.downloader import FetchError
from site_mirror.mirror import MirrorOrchestrator
from site_mirror.models import JobStatus
from site_mirror.renderers import BaseRenderer, RenderResult

ROOT = "https://example.com/"


def drain(q: queue.Queue):
    events = []
    while True:
        try:
            events.append(q.get_nowait())
        except queue.Empty:
            return events


def files_of(db, job_id):
    return {f["path"]: f for f in db.get_files_by_project(job_id)}


def test_stylesheet_graph_mirrored(orchestrator, site, db, state, make_job):
    site.add(ROOT, '<html><head><link rel="stylesheet" href="/static/a.css"></head>'
                   '<body><h1>Hi</h1></body></html>')
    site.add(ROOT + "static/a.css", '@import url("b.css");\nbody { color: red; }',
             content_type="text/css")
    site.add(ROOT + "static/b.css",
             '@font-face { font-family: X; src: url("../fonts/x.woff2") format("woff2"); }',
             content_type="text/css")
    site.add(ROOT + "fonts/x.woff2", b"\x00font", content_type="font/woff2")
    job_id = make_job()

    orchestrator.run(job_id)

    job = state.get(job_id)
    assert job.status == JobStatus.COMPLETE
    assert job.progress == 100
    assert job.current_step == "Mirror complete - 1/1 resources downloaded (100%)"
    # a.css from the page, b.css and the font from inside the stylesheets
    assert job.resources_discovered == 3
    assert job.resources_fetched == 3
    assert job.resources_failed == 0

    files = files_of(db, job_id)
    assert sorted(files) == ["css/static/a.css", "css/static/b.css",
                             "fonts/fonts/x.woff2", "index.html"]
    assert job.total_files == 4
    assert job.total_size == sum(f["size"] for f in files.values())
    assert "@import url('../static/b.css');" in files["css/static/a.css"]["content"]
    assert "url('../../fonts/fonts/x.woff2')" in files["css/static/b.css"]["content"]
    assert 'href="./css/static/a.css"' in files["index.html"]["content"]
    assert files["fonts/fonts/x.woff2"]["content"] is None

    on_disk = os.path.join(job.output_dir, "fonts", "fonts", "x.woff2")
    with open(on_disk, "rb") as f:
        assert f.read() == b"\x00font"


def test_image_and_inline_background_share_one_fetch(orchestrator, site, db, make_job):
    site.add(ROOT, '<html><body><img src="/img/logo.png">'
                   '<div style="background-image: url(\'https://example.com/img/logo.png\')">x</div>'
                   '</body></html>')
    site.add(ROOT + "img/logo.png", b"png", content_type="image/png")
    job_id = make_job()

    orchestrator.run(job_id)

    assert site.count(ROOT + "img/logo.png") == 1
    files = files_of(db, job_id)
    assert sorted(files) == ["images/img/logo.png", "index.html"]
    html = files["index.html"]["content"]
    assert 'src="./images/img/logo.png"' in html
    assert "url('./images/img/logo.png')" in html


def test_resource_failures_do_not_fail_the_job(orchestrator, site, state, make_job):
    site.add(ROOT, '<html><head><link rel="stylesheet" href="/style.css"></head>'
                   '<body><img src="/missing.png"></body></html>')
    site.add(ROOT + "style.css", "body { margin: 0; }", content_type="text/css")
    job_id = make_job()

    orchestrator.run(job_id)

    job = state.get(job_id)
    assert job.status == JobStatus.COMPLETE
    assert job.resources_failed == 1
    assert job.resources_fetched == 1
    assert job.resources_discovered == 2
    assert job.current_step.startswith("Mirror complete - 1/2 resources downloaded (50%)")
    assert "1 resources failed" in job.current_step


def test_document_failure_is_fatal(orchestrator, site, state, channel, make_job):
    site.add(ROOT, "oops", status=500)
    job_id = make_job()
    events = channel.subscribe(job_id)

    with pytest.raises(FetchError):
        orchestrator.run(job_id)

    job = state.get(job_id)
    assert job.status == JobStatus.ERROR
    assert "HTTP 500" in job.error_message
    assert drain(events)[-1].status == "error"


def test_progress_events_monotonic_and_complete(orchestrator, site, channel, make_job):
    site.add(ROOT, '<html><head><link rel="stylesheet" href="/a.css"><script src="/app.js"></script>'
                   '</head><body><img src="/1.png"><img src="/2.png"></body></html>')
    site.add(ROOT + "a.css", "a{}", content_type="text/css")
    site.add(ROOT + "app.js", "1", content_type="application/javascript")
    site.add(ROOT + "1.png", b"1", content_type="image/png")
    site.add(ROOT + "2.png", b"2", content_type="image/png")
    job_id = make_job()
    events = channel.subscribe(job_id)

    orchestrator.run(job_id)

    seen = drain(events)
    percents = [e.percent for e in seen]
    assert percents == sorted(percents)
    assert percents[-1] == 100
    assert seen[-1].status == "complete"
    assert "js/app.js" in [e.current_path for e in seen]


def test_pause_stops_before_next_fetch(orchestrator, site, state, db, channel, make_job):
    site.add(ROOT, '<html><body><img src="/img/1.png"><img src="/img/2.png">'
                   '<img src="/img/3.png"></body></html>')
    for n in (1, 2, 3):
        site.add(f"{ROOT}img/{n}.png", b"png", content_type="image/png")
    job_id = make_job()
    site.hooks[ROOT + "img/1.png"] = lambda: state.request_pause(job_id)
    events = channel.subscribe(job_id)

    orchestrator.run(job_id)

    job = state.get(job_id)
    assert job.status == JobStatus.PAUSED
    assert job.current_step.startswith("Paused at")
    assert site.count(ROOT + "img/1.png") == 1
    assert site.count(ROOT + "img/2.png") == 0
    assert site.count(ROOT + "img/3.png") == 0
    assert sorted(files_of(db, job_id)) == ["images/img/1.png"]
    assert drain(events)[-1].status == "paused"


def test_pause_before_start(orchestrator, site, state, make_job):
    job_id = make_job()
    state.request_pause(job_id)

    orchestrator.run(job_id)

    assert state.get(job_id).status == JobStatus.PAUSED
    assert site.requests == []


def test_crawl_saves_same_host_pages(orchestrator, site, db, state, make_job):
    site.add(ROOT, """<html><body>
        <a href="/about">About</a>
        <a href="/blog/post/">Post</a>
        <a href="/contact.html">Contact</a>
        <a href="/gone">Gone</a>
        <a href="https://other.com/x">Elsewhere</a>
        <a href="/#top">Top</a>
        </body></html>""")
    site.add(ROOT + "about", "<p>about</p>")
    site.add(ROOT + "blog/post/", "<p>post</p>")
    site.add(ROOT + "contact.html", "<p>contact</p>")
    job_id = make_job(crawl_depth=1)

    orchestrator.run(job_id)

    job = state.get(job_id)
    assert job.status == JobStatus.COMPLETE
    assert job.pages_processed == 3
    files = files_of(db, job_id)
    assert {"about.html", "blog_post.html", "contact.html", "index.html"} <= set(files)
    assert files["about.html"]["content"] == "<p>about</p>"
    assert not any("other.com" in url for url in site.requests)


def test_crawl_respects_page_cap(config, orchestrator, site, make_job):
    config.crawl.max_pages = 3
    links = "".join(f'<a href="/p{i}">p{i}</a>' for i in range(8))
    site.add(ROOT, f"<html><body>{links}</body></html>")
    for i in range(8):
        site.add(f"{ROOT}p{i}", f"<p>{i}</p>")
    job_id = make_job(crawl_depth=1)

    orchestrator.run(job_id)

    crawled = [url for url in site.requests if "/p" in url]
    assert crawled == [f"{ROOT}p0", f"{ROOT}p1", f"{ROOT}p2"]


class FakeBrowser(BaseRenderer):
    name = "browser-render"
    closed = False

    def render(self, url, on_progress=None):
        for fraction in (0.1, 0.6, 0.3, 1.0):
            if on_progress:
                on_progress(fraction)
        return RenderResult(html='<html><head><link rel="stylesheet" href="/site.css">'
                                 '</head><body><div id="app">rendered</div></body></html>')

    def close(self):
        FakeBrowser.closed = True


def test_browser_strategy_reports_render_band(config, db, state, site, channel, make_job):
    site.add(ROOT + "site.css", "a{}", content_type="text/css")
    orchestrator = MirrorOrchestrator(
        config, db, state, channel, transport=site.transport,
        renderer_factory=lambda strategy, cfg, downloader: FakeBrowser(cfg, downloader),
    )
    job_id = make_job(strategy="browser-render")
    events = channel.subscribe(job_id)

    orchestrator.run(job_id)

    percents = [e.percent for e in drain(events)]
    assert percents == sorted(percents)
    assert any(5 < p < 15 for p in percents)
    assert percents[-1] == 100
    assert FakeBrowser.closed
    html = files_of(db, job_id)["index.html"]["content"]
    assert "rendered" in html
    assert 'href="./css/site.css"' in html


def test_legacy_charset_page_saved_as_utf8(orchestrator, site, db, make_job):
    page = ('<html><head><meta charset="windows-1252"></head>'
            '<body><p>“q” café</p></body></html>')
    site.add(ROOT, page.encode("cp1252"), content_type="text/html; charset=windows-1252")
    job_id = make_job()

    orchestrator.run(job_id)

    html = files_of(db, job_id)["index.html"]["content"]
    assert "<p>“q” café</p>" in html
    job_dir = db.get_project(job_id)["output_dir"]
    with open(os.path.join(job_dir, "index.html"), "rb") as f:
        assert "“q” café".encode("utf-8") in f.read()
