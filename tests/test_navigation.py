"""Tests for the ?thread= address adapter and in-memory history."""

from __future__ import annotations

import pytest

from message_simulator.navigation import (
    HistoryNavigation,
    read_thread_param,
    with_thread_param,
)


class TestReadThreadParam:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("http://localhost/", None),
            ("http://localhost/?thread=abc", "abc"),
            ("http://localhost/?thread=", ""),
            ("http://localhost/?thread", ""),
            ("http://localhost/?a=1&thread=x&thread=y", "x"),
            ("http://localhost/?other=thread", None),
        ],
    )
    def test_values(self, url, expected):
        assert read_thread_param(url) == expected

    def test_custom_param(self):
        assert read_thread_param("http://h/?t=1&thread=2", "t") == "1"


class TestWithThreadParam:
    def test_preserves_path_other_params_and_fragment(self):
        url = with_thread_param("http://localhost:3000/chat?view=compact#top", "abc")
        assert url == "http://localhost:3000/chat?view=compact&thread=abc#top"

    def test_replaces_in_place(self):
        url = with_thread_param("http://h/?thread=old&view=x", "new")
        assert url == "http://h/?thread=new&view=x"

    def test_collapses_duplicates(self):
        assert with_thread_param("http://h/?thread=a&thread=b", "c") == "http://h/?thread=c"

    def test_none_removes(self):
        assert with_thread_param("http://h/?view=x&thread=a", None) == "http://h/?view=x"

    def test_empty_string_kept(self):
        url = with_thread_param("http://h/", "")
        assert read_thread_param(url) == ""


class TestHistoryNavigation:
    def test_initial_state(self, navigation):
        assert navigation.entries == ["http://localhost:3000/"]
        assert navigation.index == 0
        assert navigation.get_current_thread_id() is None

    def test_set_pushes(self, navigation):
        navigation.set_current_thread_id("a")
        navigation.set_current_thread_id("b")
        assert navigation.get_current_thread_id() == "b"
        assert len(navigation.entries) == 3
        assert navigation.index == 2

    def test_replace_does_not_grow_history(self, navigation):
        navigation.set_current_thread_id("a")
        navigation.replace_current_thread_id("b")
        assert navigation.entries == [
            "http://localhost:3000/",
            "http://localhost:3000/?thread=b",
        ]

    def test_replace_none_removes_param(self):
        nav = HistoryNavigation("http://h/?thread=a&x=1")
        nav.replace_current_thread_id(None)
        assert nav.address == "http://h/?x=1"
        assert nav.get_current_thread_id() is None

    def test_back_and_forward_notify(self, navigation):
        seen = []
        navigation.on_thread_id_change(seen.append)
        navigation.set_current_thread_id("a")
        navigation.set_current_thread_id("b")
        assert seen == []  # push is silent
        assert navigation.back()
        assert navigation.back()
        assert navigation.forward()
        assert seen == ["a", None, "a"]

    def test_replace_is_silent(self, navigation):
        seen = []
        navigation.on_thread_id_change(seen.append)
        navigation.replace_current_thread_id("a")
        assert seen == []

    def test_out_of_range_is_noop(self, navigation):
        seen = []
        navigation.on_thread_id_change(seen.append)
        assert not navigation.back()
        assert not navigation.forward()
        assert not navigation.go(0)
        assert seen == []

    def test_push_truncates_forward_entries(self, navigation):
        navigation.set_current_thread_id("a")
        navigation.set_current_thread_id("b")
        navigation.back()
        navigation.set_current_thread_id("c")
        assert [read_thread_param(u) for u in navigation.entries] == [None, "a", "c"]
        assert not navigation.forward()

    def test_unsubscribe(self, navigation):
        seen = []
        unsubscribe = navigation.on_thread_id_change(seen.append)
        navigation.set_current_thread_id("a")
        unsubscribe()
        navigation.back()
        assert seen == []

    def test_navigate_to(self, navigation):
        navigation.navigate_to("http://localhost:3000/?thread=shared")
        assert navigation.get_current_thread_id() == "shared"
        assert navigation.index == 1
