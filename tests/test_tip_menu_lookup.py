"""
tests/test_tip_menu_lookup.py — Public Profile Tip-Menu Lookup
===============================================================
"""

from __future__ import annotations

import httpx
import pytest
from conftest import run_async

from director.services.tip_menu_lookup import (
    DEFAULT_ORIGINS,
    TipMenuUnavailable,
    candidate_origins,
    lookup_tip_menu,
    normalize_menu_settings,
    normalize_origin,
)


class TestNormalizeOrigin:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("stripchat.com", "https://stripchat.com"),
            ("https://EU.Stripchat.com/some/path?q=1", "https://eu.stripchat.com"),
            ("http://stripchat.local:8080", "http://stripchat.local:8080"),
            ("https://evil.com", None),
            ("https://stripchat.com.evil.com", None),
            ("ftp://stripchat.com", None),
            ("", None),
            (None, None),
        ],
    )
    def test_values(self, raw, expected):
        assert normalize_origin(raw) == expected


class TestCandidateOrigins:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("TIP_MENU_ORIGINS", raising=False)
        assert candidate_origins() == list(DEFAULT_ORIGINS)

    def test_host_then_configured_then_defaults_deduplicated(self, monkeypatch):
        monkeypatch.setenv("TIP_MENU_ORIGINS", "eu.stripchat.com, https://stripchat.com ,bad.example")
        assert candidate_origins("stripchat.dev") == [
            "https://stripchat.dev",
            "https://eu.stripchat.com",
            "https://stripchat.com",
        ]


class TestNormalizeMenuSettings:
    def test_alternate_keys_and_filtering(self):
        raw = [
            {"activity": "Dance", "price": 40},
            {"title": "Song", "tokens": "12.8"},
            {"name": "Wave", "amount": 5},
            {"activity": "Free", "price": 0},
            {"activity": "  ", "price": 10},
            "junk",
        ]
        assert normalize_menu_settings(raw) == [
            {"activity": "Dance", "price": 40},
            {"activity": "Song", "price": 12},
            {"activity": "Wave", "price": 5},
        ]

    def test_not_a_list(self):
        assert normalize_menu_settings({"activity": "x"}) == []


class TestLookup:
    def test_top_level_tip_menu_is_accepted(self, monkeypatch):
        monkeypatch.delenv("TIP_MENU_ORIGINS", raising=False)
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"tipMenu": {"settings": [{"activity": "Hi", "price": 3}]}})

        result = run_async(lookup_tip_menu("alice", transport=httpx.MockTransport(handler)))
        assert result.source == "https://stripchat.dev"
        assert result.tip_menu["isEnabled"] is True
        assert seen == ["https://stripchat.dev/api/front/v2/models/username/alice/cam"]

    def test_network_errors_and_bad_json_are_skipped(self, monkeypatch):
        monkeypatch.delenv("TIP_MENU_ORIGINS", raising=False)

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "stripchat.dev":
                raise httpx.ConnectTimeout("slow", request=request)
            return httpx.Response(200, content=b"<html>")

        with pytest.raises(TipMenuUnavailable):
            run_async(lookup_tip_menu("alice", transport=httpx.MockTransport(handler)))

    def test_invalid_username(self):
        with pytest.raises(ValueError, match="Invalid username"):
            run_async(lookup_tip_menu("bad name!"))
