"""
Tests for command name resolution.

Run with:  python -m pytest webview_commands/test_resolver.py -v
"""

import pytest

from webview_commands.resolver import resolve_command_name, resolve_uri, split_uri


class TestResolveCommandName:
    """Tests for the authority + path algorithm."""

    def test_authority_only(self):
        assert resolve_command_name("greet", "") == "greet"

    def test_authority_none(self):
        assert resolve_command_name(None, "/greet") == "greet"

    def test_authority_and_path(self):
        assert resolve_command_name("mycommands", "/greet/") == "mycommands/greet"

    def test_path_only_strips_slashes(self):
        assert resolve_command_name("", "//greet//") == "greet"

    def test_inner_slashes_preserved(self):
        assert resolve_command_name("a", "/b//c") == "a/b//c"

    def test_empty_address(self):
        assert resolve_command_name("", "") == ""
        assert resolve_command_name("", "/") == ""

    def test_percent_encoded_slash_trimmed(self):
        assert resolve_command_name("%2Fgreet", "") == "greet"
        assert resolve_command_name("", "/%2Fgreet%2F") == "greet"

    def test_percent_encoded_space(self):
        assert resolve_command_name("files", "/read%20me") == "files/read me"

    def test_utf8_decoding(self):
        assert resolve_command_name("", "/caf%C3%A9") == "café"

    def test_invalid_utf8_kept_encoded(self):
        assert resolve_command_name("", "/bad%FF") == "bad%FF"

    def test_plus_is_not_a_space(self):
        assert resolve_command_name("", "/a+b") == "a+b"

    def test_case_preserved(self):
        assert resolve_command_name("MyCommands", "/Greet") == "MyCommands/Greet"


class TestIdempotence:
    """Resolving a resolved name must give the same name back."""

    @pytest.mark.parametrize("authority,path", [
        ("greet", ""),
        ("mycommands", "/greet/"),
        ("%2Fgreet", ""),
        ("", "/%252Fgreet"),
        ("", "/bad%FF"),
        ("files", "/read%20me/"),
        ("", "///"),
        ("a%2F", "%2Fb"),
        ("", "/100%"),
    ])
    def test_idempotent(self, authority, path):
        once = resolve_command_name(authority, path)
        assert resolve_command_name("", once) == once
        assert resolve_command_name(None, "/" + once) == once


class TestResolveUri:
    """Tests for full URI strings."""

    def test_custom_scheme_authority(self):
        assert resolve_uri("app://greet") == "greet"

    def test_custom_scheme_service_path(self):
        assert resolve_uri("app://mycommands/greet/") == "mycommands/greet"

    def test_query_and_fragment_ignored(self):
        assert resolve_uri("app://greet?x=1#top") == "greet"

    def test_empty_authority(self):
        assert resolve_uri("app:///greet") == "greet"

    def test_split_uri(self):
        assert split_uri("http://app.greet/x") == ("http", "app.greet", "/x")

    def test_double_encoded_name(self):
        assert resolve_uri("app://a%2541") == "aA"

    def test_name_with_colon(self):
        assert resolve_uri("app://a:b") == "a:b"
        assert resolve_uri("app:///files/c:tmp") == "files/c:tmp"

    def test_bare_name(self):
        assert resolve_uri("greet") == "greet"
        assert resolve_uri("/mycommands/greet/") == "mycommands/greet"

    @pytest.mark.parametrize("uri", [
        "app://a:b",
        "app://greet?x=1",
        "app:///what%3Fnow",
        "app://mycommands/greet/",
        "app://a%2541",
    ])
    def test_idempotent_on_resolved_names(self, uri):
        once = resolve_uri(uri)
        assert resolve_uri(once) == once
