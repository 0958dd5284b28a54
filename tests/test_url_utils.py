import pytest

from warmer.utils.url_utils import build_url, rewrite_to_gateway, split_url


def test_split_url_keeps_port_and_query():
    parts = split_url("https://Shop.Test:8443/catalog/product?id=5")

    assert parts.scheme == "https"
    assert parts.host == "shop.test:8443"
    assert parts.location == "/catalog/product?id=5"


def test_split_url_defaults_location_to_root():
    assert split_url("http://shop.test").location == "/"


@pytest.mark.parametrize("url", ["/relative/path", "ftp://shop.test/file", "not-a-url"])
def test_split_url_rejects_non_http_urls(url):
    with pytest.raises(ValueError):
        split_url(url)


def test_build_url_joins_path():
    assert build_url("https", "shop.test", "/customer/account/login/") == "https://shop.test/customer/account/login/"
    assert build_url("http", "shop.test:8080", "checkout") == "http://shop.test:8080/checkout"


def test_rewrite_to_gateway_replaces_origin_only():
    assert (
        rewrite_to_gateway("https://shop.test/p/1?a=b#top", "http://10.13.37.1:8080/")
        == "http://10.13.37.1:8080/p/1?a=b"
    )
    assert rewrite_to_gateway("https://shop.test", "http://cache:80") == "http://cache:80/"
