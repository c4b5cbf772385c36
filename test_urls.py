#!/usr/bin/env python3
"""
Tests for the URL helpers
"""

import pytest

from broken_link_crawler.urls import (
    chunk_list,
    clean_text,
    is_internal_url,
    is_safe_url,
    is_valid_url,
    normalize_url,
    resolve_url,
    should_crawl_url,
    should_skip_href,
)


class TestUrlHelpers:
    """Test class for URL normalization and classification"""

    def test_is_valid_url(self):
        """Only absolute http(s) URLs with a host are valid"""
        assert is_valid_url("https://example.com/page") == True
        assert is_valid_url("http://example.com") == True

        assert is_valid_url("") == False
        assert is_valid_url(None) == False
        assert is_valid_url("ftp://example.com") == False
        assert is_valid_url("mailto:test@example.com") == False
        assert is_valid_url("/relative/path") == False
        assert is_valid_url("http://example.com:notaport/") == False

    def test_normalize_url(self):
        """Test URL normalization"""
        # Fragment removal
        assert normalize_url("https://example.com/page#section") == "https://example.com/page"
        # Case, default port, trailing slash and query order
        assert normalize_url("HTTPS://Example.COM:443/Path/?b=2&a=1") == "https://example.com/Path?a=1&b=2"
        # Root keeps its slash
        assert normalize_url("https://example.com") == "https://example.com/"
        # Non-default ports are kept
        assert normalize_url("http://example.com:8080/a/") == "http://example.com:8080/a"

    def test_resolve_url(self):
        assert resolve_url("/about", "https://example.com/blog/post") == "https://example.com/about"
        assert resolve_url("next", "https://example.com/blog/") == "https://example.com/blog/next"
        assert resolve_url("https://other.com/", "https://example.com/") == "https://other.com/"

    def test_is_internal_url(self):
        assert is_internal_url("https://example.com/a", "https://EXAMPLE.com") == True
        assert is_internal_url("http://example.com/a", "https://example.com") == True
        assert is_internal_url("https://blog.example.com/a", "https://example.com") == False
        assert is_internal_url("https://other.com/", "https://example.com") == False

    def test_should_skip_href(self):
        for href in ("javascript:void(0)", "mailto:a@b.com", "tel:+123", "data:text/plain,hi", "#top"):
            assert should_skip_href(href) == True
        assert should_skip_href("/about") == False
        assert should_skip_href("  JavaScript:alert(1)") == True

    def test_should_crawl_url(self):
        """Static assets, documents and admin/api paths are not crawled"""
        assert should_crawl_url("https://example.com/about") == True
        assert should_crawl_url("https://example.com/") == True
        assert should_crawl_url("https://example.com/files/report.PDF") == False
        assert should_crawl_url("https://example.com/static/app.js") == False
        assert should_crawl_url("https://example.com/admin") == False
        assert should_crawl_url("https://example.com/api/v1/items") == False
        assert should_crawl_url("https://example.com/apiary") == True

    def test_is_safe_url(self):
        """Localhost, private networks and metadata hosts are refused"""
        assert is_safe_url("https://example.com/") == (True, None)

        safe, reason = is_safe_url("http://127.0.0.1/admin")
        assert safe == False
        assert "Localhost" in reason

        safe, reason = is_safe_url("http://10.1.2.3/")
        assert safe == False
        assert "Private" in reason

        assert is_safe_url("http://169.254.169.254/latest/meta-data")[0] == False
        assert is_safe_url("http://localhost:3000/")[0] == False
        assert is_safe_url("http://printer.local/")[0] == False
        assert is_safe_url("http://[::1]/")[0] == False
        assert is_safe_url("not a url")[0] == False

    def test_clean_text(self):
        assert clean_text("  Read\n   more  ") == "Read more"
        assert clean_text("x" * 50, max_length=10) == "x" * 10
        assert clean_text(None) == ""

    def test_chunk_list(self):
        assert chunk_list([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert chunk_list([], 3) == []
        with pytest.raises(ValueError):
            chunk_list([1], 0)
