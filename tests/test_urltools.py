from riskscan.urltools import (
    is_http_url,
    normalize_url,
    origin_root,
    query_param_names,
    replace_query_param,
    resolve,
    same_origin,
)


def test_normalize_url_drops_fragment_and_sorts_query():
    assert normalize_url("HTTPS://Example.com:443/Shop/?b=2&a=1#top") == "https://example.com/Shop?a=1&b=2"


def test_normalize_url_keeps_root_slash():
    assert normalize_url("https://example.com") == "https://example.com/"
    assert normalize_url("https://example.com/") == "https://example.com/"


def test_normalize_url_is_idempotent():
    samples = [
        "http://example.com:80/a/b/?z=1&y=&x=3#frag",
        "https://example.com/search?q=hello+world",
        "https://example.com:8443/path/",
        "https://example.com/?a=%2F",
    ]
    for url in samples:
        once = normalize_url(url)
        assert normalize_url(once) == once


def test_normalize_url_keeps_non_default_port():
    assert normalize_url("https://example.com:8443/x") == "https://example.com:8443/x"


def test_resolve_skips_non_navigational_links():
    base = "https://example.com/dir/page"
    assert resolve(base, "#section") is None
    assert resolve(base, "mailto:a@example.com") is None
    assert resolve(base, "javascript:void(0)") is None
    assert resolve(base, "tel:123") is None
    assert resolve(base, "other") == "https://example.com/dir/other"
    assert resolve(base, "/root") == "https://example.com/root"


def test_origin_helpers():
    assert same_origin("https://example.com/a", "https://EXAMPLE.com:443/b")
    assert not same_origin("https://example.com/", "http://example.com/")
    assert not same_origin("https://example.com/", "https://api.example.com/")
    assert origin_root("https://example.com/a/b?c=1") == "https://example.com"
    assert is_http_url("http://example.com")
    assert not is_http_url("ftp://example.com")
    assert not is_http_url("not a url")


def test_invalid_ports_are_not_http_urls():
    assert not is_http_url("https://example.com:99999/x")
    assert not is_http_url("https://example.com:abc/")
    assert resolve("https://example.com/", "https://example.com:99999/x?a=1") is None
    assert not same_origin("https://example.com:abc/", "https://example.com/")
    assert not same_origin("https://example.com/", "https://example.com:99999/")
    assert normalize_url("https://example.com:99999/x") == "https://example.com:99999/x"


def test_replace_query_param_replaces_or_appends():
    assert replace_query_param("https://example.com/p?id=1&x=2", "id", "9") == "https://example.com/p?id=9&x=2"
    assert replace_query_param("https://example.com/p", "q", "a b") == "https://example.com/p?q=a+b"
    assert query_param_names("https://example.com/p?a=1&b=2&a=3") == ["a", "b"]
