"""Tests for restrik.expand."""

from __future__ import annotations

import pytest

from restrik.errors import ConfigError
from restrik.expand import expand_body, expand_path, expand_values


class TestExpandPath:
    def test_path_only(self):
        assert expand_path("$(path)/abc", "collections") == "collections/abc"

    def test_path_twice(self):
        assert expand_path("$(path)/$(path)", "a") == "a/a"

    def test_path_and_body(self):
        assert expand_path("$(path)/$(body.name)", "collections", {"name": "abc"}) == "collections/abc"

    def test_body_value_is_escaped(self):
        assert expand_path("$(body.name)", "", {"name": "a/b/c"}) == "a%2Fb%2Fc"

    def test_explicit_escape(self):
        assert expand_path("$escape(body.name)", "", {"name": "a/b/c"}) == "a%2Fb%2Fc"

    def test_unescape(self):
        assert expand_path("$unescape(body.path)", "", {"path": "a%2Fb%2Fc"}) == "a/b/c"

    @pytest.mark.parametrize("path", ["/a/b", "/a/b/"])
    def test_trim_path(self, path):
        assert expand_path("$trim_path(body.path)", path, {"path": "/a/b/c"}) == "c"

    def test_base(self):
        assert expand_path("$base(body.path)", "", {"path": "/a/b/c"}) == "c"

    def test_url_path(self):
        body = {"id": "https://base/collections/abc"}
        assert expand_path("$url_path(body.id)", "", body) == "/collections/abc"

    def test_chained_functions(self):
        body = {"id": "https://base/foo/bar/abc"}
        assert expand_path("$url_path.trim_path(body.id)", "/foo", body) == "bar/abc"

    def test_self_url_strips_base(self):
        body = {"self": "https://api.test/things/1"}
        assert expand_path("#(body.self)", "/things", body, base_url="https://api.test") == "/things/1"

    def test_missing_property(self):
        with pytest.raises(ConfigError, match="no property found"):
            expand_path("$(body.prop)", "", {"name": "abc"})

    def test_unknown_reference(self):
        with pytest.raises(ConfigError, match="invalid match"):
            expand_path("$(foo)", "")

    def test_unknown_function(self):
        with pytest.raises(ConfigError, match="unknown function"):
            expand_path("$shout(body.name)", "", {"name": "x"})

    def test_body_reference_without_body(self):
        with pytest.raises(ConfigError, match="without a body"):
            expand_path("$(path)/$(body.id)", "/things")

    def test_plain_pattern_untouched(self):
        assert expand_path("/things/1", "/things") == "/things/1"


class TestExpandBody:
    @pytest.mark.parametrize(
        ("expr", "body", "expected"),
        [
            ("$(body)", "abc", "abc"),
            ("$(body)", 123, "123"),
            ("$(body)", {"foo": 123}, '{"foo":123}'),
            ("$(body.a)", {"a": "abc"}, "abc"),
            ("$(body.a)", {"a": 123}, "123"),
            ("$(body.a)", {"a": {"foo": 123}}, '{"foo":123}'),
        ],
    )
    def test_values(self, expr, body, expected):
        assert expand_body(expr, body) == expected

    def test_nothing_is_escaped(self):
        assert expand_body("Bearer $(body.token)", {"token": "a/b c"}) == "Bearer a/b c"

    def test_empty_body_leaves_expression(self):
        assert expand_body("$(body.id)", None) == "$(body.id)"
        assert expand_body("$(body.id)", b"") == "$(body.id)"

    def test_self_reference_is_kept(self):
        assert expand_body("#(body.self)", {"self": "x"}) == "#(body.self)"

    def test_trim_path_needs_a_path(self):
        with pytest.raises(ConfigError, match="trim_path"):
            expand_body("$trim_path(body.p)", {"p": "/a"})

    def test_missing_property(self):
        with pytest.raises(ConfigError):
            expand_body("$(body.nope)", {"id": 1})


class TestExpandValues:
    def test_headers_and_queries(self):
        body = {"etag": "v2", "page": 3}
        assert expand_values({"If-Match": "$(body.etag)"}, body) == {"If-Match": "v2"}
        assert expand_values({"page": ["$(body.page)", "x"]}, body) == {"page": ["3", "x"]}

    def test_none_body_is_identity(self):
        assert expand_values({"a": "$(body.x)"}, None) == {"a": "$(body.x)"}


class TestResourceIdPaths:
    def test_id_appended_to_collection(self):
        assert expand_path("$(path)/$(body.id)", "/res", {"id": "42"}) == "/res/42"

    def test_id_with_slash_is_escaped(self):
        assert expand_path("$(path)/$(body.id)", "/res", {"id": "a/b"}) == "/res/a%2Fb"
