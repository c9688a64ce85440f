"""Tests for service utility functions."""
import pytest

from services.utils import extract_domain, get_favicon_url


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://www.github.com/octo", "github.com"),
        ("https://docs.python.org:8080/3/", "docs.python.org"),
        ("  https://A.example  ", "a.example"),
        ("not a url", ""),
        ("http://[bad", ""),
    ],
)
def test__extract_domain(url: str, expected: str) -> None:
    assert extract_domain(url) == expected


def test__get_favicon_url() -> None:
    assert get_favicon_url("https://github.com/octo") == (
        "https://www.google.com/s2/favicons?domain=github.com&sz=32"
    )
    assert get_favicon_url("https://github.com", size=64).endswith("&sz=64")
    assert get_favicon_url("relative/path") is None
    assert get_favicon_url("http://[bad") is None
