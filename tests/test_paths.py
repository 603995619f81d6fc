from site_mirror.paths import css_relative, local_path, page_filename

BASE = "https://example.com/"


def test_root_maps_to_index():
    assert local_path("https://example.com/", BASE) == "index.html"
    assert local_path("/", BASE) == "index.html"


def test_extensionless_paths_are_directories():
    assert local_path("/about", BASE) == "about/index.html"
    assert local_path("/docs/", BASE) == "docs/index.html"


def test_query_and_fragment_ignored():
    assert local_path("/css/site.css?v=2#top", BASE) == "css/site.css"


def test_relative_reference_resolved_against_base():
    assert local_path("img/a.png", "https://example.com/blog/post.html") == "blog/img/a.png"
    assert local_path("../img/a.png", "https://example.com/blog/post/") == "blog/img/a.png"


def test_same_url_same_path():
    first = local_path("/static/app.js", BASE)
    assert first == local_path("https://example.com/static/app.js", BASE)
    assert first == "static/app.js"


def test_segments_are_decoded_and_sanitized():
    assert local_path("/a%20b/c.png", BASE) == "a b/c.png"
    assert local_path("/a%3Cb%3E.png", BASE) == "a_b_.png"


def test_traversal_segments_dropped():
    assert local_path("/../../etc/passwd.txt", BASE) == "etc/passwd.txt"
    assert local_path("/x/%2e%2e/y.css", BASE) == "x/y.css"


def test_malformed_url_falls_back_to_index():
    assert local_path("http://[::1", BASE) == "index.html"


def test_css_relative_between_stylesheets():
    assert css_relative("css/style.css", "css/other.css") == "./other.css"
    assert css_relative("css/static/a.css", "css/static/b.css") == "../static/b.css"


def test_css_relative_to_other_folders():
    assert css_relative("css/style.css", "fonts/x.woff2") == "../fonts/x.woff2"
    assert css_relative("css/static/b.css", "fonts/fonts/x.woff2") == "../../fonts/fonts/x.woff2"
    assert css_relative("css/a/b/c.css", "images/x.png") == "../../../images/x.png"


def test_page_filename():
    assert page_filename("https://example.com/about") == "about.html"
    assert page_filename("https://example.com/blog/post/") == "blog_post.html"
    assert page_filename("https://example.com/contact.html") == "contact.html"
    assert page_filename("https://example.com/") == "index.html"
