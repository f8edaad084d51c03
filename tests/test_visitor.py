from __future__ import annotations

import pytest

from crossrun.visitor import BrowserVisitor, compose_urls, normalize_browser


def test_compose_urls_joins_without_double_slashes() -> None:
    urls = compose_urls("http://localhost:9000/", "project", ["/home/me/a.html", "b.html"])
    assert urls == [
        "http://localhost:9000/project/home/me/a.html",
        "http://localhost:9000/project/b.html",
    ]
    assert compose_urls("http://h:1", "", ["/"]) == ["http://h:1/"]


def test_browser_aliases() -> None:
    assert normalize_browser("Chrome") == "chromium"
    assert normalize_browser("safari") == "webkit"
    assert normalize_browser("firefox") == "firefox"
    with pytest.raises(ValueError):
        normalize_browser("netscape")


def test_visitor_validates_names_up_front() -> None:
    with pytest.raises(ValueError):
        BrowserVisitor(["chromium", "lynx"])
    assert BrowserVisitor(["ff", "chrome"]).engines == ["firefox", "chromium"]
