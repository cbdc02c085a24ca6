"""Tests for restrik.resource."""

from __future__ import annotations

import json

import pytest

from restrik.errors import ConfigError, HTTPError, PartialCreate, PollFailure, RestrikError
from restrik.models import ProviderConfig, ResourceConfig, ResourceState
from restrik.private import EPHEMERAL_BODY_KEY, EphemeralBodyManager, MemoryPrivateStore
from restrik.resource import Resource


def _config(**kwargs) -> ResourceConfig:
    kwargs.setdefault("path", "/things")
    return ResourceConfig.model_validate(kwargs)


def _state(**kwargs) -> ResourceState:
    kwargs.setdefault("id", "/things/7")
    kwargs.setdefault("path", "/things")
    return ResourceState.model_validate(kwargs)


@pytest.fixture
def resource(client):
    return Resource(client)


@pytest.fixture
def private():
    return MemoryPrivateStore()


class TestValidate:
    def test_write_only_must_be_in_body(self, resource):
        with pytest.raises(ConfigError, match="write_only_attrs"):
            resource.validate(_config(body={"a": 1}, write_only_attrs=["b"]))

    def test_ephemeral_overlap(self, resource):
        with pytest.raises(ConfigError, match="overlap"):
            resource.validate(_config(body={"a": 1}, ephemeral_body={"a": 2}))

    def test_bad_poll_locator(self, resource):
        config = _config(poll_create={"status_locator": "status", "status": {"success": "ok"}})
        with pytest.raises(ConfigError, match="invalid locator"):
            resource.validate(config)

    def test_ok(self, resource):
        resource.validate(_config(body={"a": 1, "pw": "x"}, write_only_attrs=["pw"], ephemeral_body={"k": "v"}))


class TestCreate:
    def test_put_with_probe(self, server, client, private):
        server.add("GET", "/res/1", 404).add("GET", "/res/1", 200, json={"location": "x", "id": "1"})
        server.add("PUT", "/res/1", 201, json={"location": "x"})
        config = _config(path="/res/1", create_method="PUT", body={"location": "x"})

        state = Resource(client).create(config, private)

        assert state.id == "/res/1"
        assert state.body == {"location": "x"}
        assert state.output == {"location": "x", "id": "1"}
        assert [r.method for r in server.requests] == ["GET", "PUT", "GET"]

    def test_probe_rejects_existing(self, server, resource, private):
        server.add("GET", "/things", 200, json=[])
        config = _config(body={"name": "a"}, check_existance=True)

        with pytest.raises(HTTPError, match="already exists"):
            resource.create(config, private)
        assert server.calls("POST") == []

    def test_post_then_read(self, server, resource, private):
        server.add("POST", "/things", 201, json={"id": "7", "name": "a"})
        server.add("GET", "/things/7", json={"id": "7", "name": "a", "created": "now"})
        config = _config(body={"name": "a"}, read_path="$(path)/$(body.id)")
        seen = []

        state = resource.create(config, private, on_state=seen.append)

        assert state.id == "/things/7"
        assert state.body == {"name": "a"}
        assert state.output["created"] == "now"
        assert seen[0].id == "/things/7"
        assert seen[0].output == {"id": "7", "name": "a"}

    def test_provider_default_method(self, server, client, private):
        server.add("PUT", "/things", 200, json={})
        server.add("GET", "/things", 404).add("GET", "/things", json={"name": "a"})
        provider = ProviderConfig(base_url="https://api.test", create_method="PUT")

        Resource(client, provider=provider).create(_config(body={"name": "a"}), private)

        assert len(server.calls("PUT", "/things")) == 1

    def test_create_selector(self, server, resource, private):
        server.add("POST", "/things", 201, json={"data": {"id": "7"}})
        server.add("GET", "/things/7", json={"id": "7", "name": "a"})
        config = _config(body={"name": "a"}, create_selector="data", read_path="$(path)/$(body.id)")

        assert resource.create(config, private).id == "/things/7"

    def test_ephemeral_body_sent_not_kept(self, server, resource, private):
        server.add("POST", "/things", 201, json={"id": "7"})
        server.add("GET", "/things/7", json={"id": "7", "name": "a", "secret": "s3"})
        config = _config(body={"name": "a"}, ephemeral_body={"secret": "s3"}, read_path="$(path)/$(body.id)")

        state = resource.create(config, private)

        assert json.loads(server.calls("POST")[0].content) == {"name": "a", "secret": "s3"}
        assert state.body == {"name": "a"}
        assert "secret" not in state.output
        assert b"s3" not in private.get(EPHEMERAL_BODY_KEY)

    def test_write_only_attrs_kept(self, server, resource, private):
        server.add("POST", "/things", 201, json={"id": "7"})
        server.add("GET", "/things/7", json={"id": "7", "name": "a"})
        config = _config(
            body={"name": "a", "password": "p"},
            write_only_attrs=["password"],
            read_path="$(path)/$(body.id)",
        )

        assert resource.create(config, private).body == {"name": "a", "password": "p"}

    def test_polls_resource_until_ready(self, server, client, private, token):
        server.add("POST", "/things", 202, json={"id": "7", "state": "Creating"})
        server.add("GET", "/things/7", json={"id": "7", "name": "a", "state": "Ready"})
        config = _config(
            body={"name": "a"},
            read_path="$(path)/$(body.id)",
            poll_create={
                "status_locator": "body.state",
                "status": {"success": "Ready", "pending": ["Creating"]},
                "default_delay_sec": 3,
            },
        )

        Resource(client).create(config, private, token)

        assert len(server.calls("GET", "/things/7")) == 2
        assert token.sleeps == [3]

    def test_polls_operation_url(self, server, client, private, token):
        server.add("POST", "/things", 202, json={"id": "7"}, headers={"Location": "/ops/1"})
        server.add("GET", "/ops/1", 202).add("GET", "/ops/1", 200)
        server.add("GET", "/things/7", json={"id": "7", "name": "a"})
        config = _config(
            body={"name": "a"},
            read_path="$(path)/$(body.id)",
            poll_create={
                "status_locator": "code",
                "url_locator": "header.location",
                "status": {"success": "200", "pending": ["202"]},
                "default_delay_sec": 1,
            },
        )

        state = Resource(client).create(config, private, token)

        assert state.id == "/things/7"
        assert len(server.calls("GET", "/ops/1")) == 2

    def test_post_create_read(self, server, resource, private):
        server.add("POST", "/things", 202, json={"id": "pending", "operation": "op-1"})
        server.add("GET", "/operations/op-1", json={"result": {"id": "7"}})
        server.add("GET", "/things/7", json={"id": "7", "name": "a"})
        config = _config(
            body={"name": "a"},
            read_path="$(path)/$(body.id)",
            post_create_read={"path": "/operations/$(body.operation)", "selector": "result"},
        )

        state = resource.create(config, private)

        assert state.id == "/things/7"

    def test_failed_poll_is_partial(self, server, client, private, token):
        server.add("POST", "/things", 202, json={"id": "7", "state": "Creating"})
        server.add("GET", "/things/7", json={"state": "Failed"})
        config = _config(
            body={"name": "a"},
            read_path="$(path)/$(body.id)",
            poll_create={"status_locator": "body.state", "status": {"success": "Ready", "pending": ["Creating"]}},
        )

        with pytest.raises(PartialCreate) as exc_info:
            Resource(client).create(config, private, token)
        assert exc_info.value.state.id == "/things/7"
        assert isinstance(exc_info.value.__cause__, PollFailure)

    def test_create_response_does_not_end_polling(self, server, client, private, token):
        server.add("POST", "/things", 200, json={"id": "7"})
        server.add("GET", "/things/7", json={"id": "7", "name": "a"})
        config = _config(
            body={"name": "a"},
            read_path="$(path)/$(body.id)",
            poll_create={"status_locator": "code", "status": {"success": "200"}, "default_delay_sec": 0},
        )

        Resource(client).create(config, private, token)

        assert len(server.calls("GET", "/things/7")) == 2
        assert token.sleeps == [0]

    def test_unreadable_after_create_is_partial(self, server, resource, private):
        server.add("POST", "/things", 201, json={"id": "7"})
        config = _config(body={"name": "a"}, read_path="$(path)/$(body.id)")

        with pytest.raises(PartialCreate, match="not readable"):
            resource.create(config, private)

    def test_create_failure(self, server, resource, private):
        server.add("POST", "/things", 400, content=b"bad name")

        with pytest.raises(HTTPError, match="bad name"):
            resource.create(_config(body={"name": ""}), private)

    def test_mutex_released(self, server, client, private):
        server.add("POST", "/things", 201, json={"id": "7"})
        server.add("GET", "/things/7", json={"id": "7"})
        resource = Resource(client)
        config = _config(body={}, read_path="$(path)/$(body.id)", precheck_create=[{"mutex": "things"}])

        resource.create(config, private)

        assert not resource.locks.locked("things")


class TestRead:
    def test_gone(self, resource, private):
        assert resource.read(_state(body={"a": 1}), private) is None

    def test_projects_onto_body(self, server, resource, private):
        server.add("GET", "/things/7", json={"id": "7", "name": "b", "extra": 1})

        state = resource.read(_state(body={"name": "a"}), private)

        assert state.body == {"name": "b"}
        assert state.output == {"id": "7", "name": "b", "extra": 1}

    def test_no_body_takes_response(self, server, resource, private):
        server.add("GET", "/things/7", json={"id": "7"})
        assert resource.read(_state(), private).body == {"id": "7"}

    def test_read_query_and_header(self, server, resource, private):
        server.add("GET", "/things/7", json={})
        state = _state(
            body={},
            query={"api-version": ["1"]},
            read_query={"api-version": ["2"]},
            header={"X-Id": "$(body.id)"},
            output={"id": "7"},
        )

        resource.read(state, private)

        request = server.calls("GET", "/things/7")[0]
        assert request.url.params["api-version"] == "2"
        assert request.headers["X-Id"] == "7"

    def test_read_selector_from_output(self, server, resource, private):
        server.add("GET", "/things", json={"items": [{"name": "a", "v": 1}, {"name": "b", "v": 2}]})
        state = _state(
            id="/things",
            body={"v": 0},
            output={"name": "b"},
            read_selector='items.#(name=="$(body.name)")',
        )

        assert resource.read(state, private).body == {"v": 2}

    def test_read_selector_miss_is_gone(self, server, resource, private):
        server.add("GET", "/things", json={"items": []})
        state = _state(id="/things", body={}, read_selector="items.0")

        assert resource.read(state, private) is None

    def test_response_template(self, server, resource, private):
        server.add("GET", "/things/7", json={"properties": {"name": "a"}})
        state = _state(body={"name": ""}, read_response_template='{"name": "$(body.properties.name)"}')

        assert resource.read(state, private).body == {"name": "a"}

    def test_output_attrs(self, server, resource, private):
        server.add("GET", "/things/7", json={"id": "7", "name": "a", "noise": {"x": 1}})
        state = _state(body={"name": "a"}, output_attrs=["id"])

        assert resource.read(state, private).output == {"id": "7"}

    def test_server_error(self, server, resource, private):
        server.add("GET", "/things/7", 500)
        with pytest.raises(HTTPError):
            resource.read(_state(), private)


class TestUpdate:
    def test_put(self, server, resource, private):
        server.add("PUT", "/things/7", json={})
        server.add("GET", "/things/7", json={"id": "7", "name": "b"})
        state = _state(body={"name": "a"}, output={"id": "7"})

        result = resource.update(state, _config(body={"name": "b"}), private)

        assert json.loads(server.calls("PUT")[0].content) == {"name": "b"}
        assert result.body == {"name": "b"}

    def test_patch_sends_merge_patch(self, server, resource, private):
        server.add("PATCH", "/things/7", json={})
        server.add("GET", "/things/7", json={"name": "a", "tags": {"y": "2"}})
        state = _state(body={"name": "a", "tags": {"x": "1"}})
        config = _config(body={"name": "a", "tags": {"y": "2"}}, update_method="PATCH")

        resource.update(state, config, private)

        request = server.calls("PATCH")[0]
        assert request.headers["Content-Type"] == "application/merge-patch+json"
        assert json.loads(request.content) == {"tags": {"x": None, "y": "2"}}

    def test_patch_without_merge_patch(self, server, resource, private):
        server.add("PATCH", "/things/7", json={})
        server.add("GET", "/things/7", json={"name": "b"})
        config = _config(body={"name": "b"}, update_method="PATCH", merge_patch_disabled=True)

        resource.update(_state(body={"name": "a"}), config, private)

        request = server.calls("PATCH")[0]
        assert request.headers["Content-Type"] == "application/json"
        assert json.loads(request.content) == {"name": "b"}

    def test_unchanged_is_skipped(self, server, resource, private):
        state = _state(body={"name": "a"}, output={"id": "7"})

        result = resource.update(state, _config(body={"name": "a"}), private)

        assert server.requests == []
        assert result.output == {"id": "7"}

    def test_ephemeral_change_forces_call(self, server, resource, private):
        server.add("PUT", "/things/7", json={})
        server.add("GET", "/things/7", json={"name": "a"})
        EphemeralBodyManager(private).set({"pw": "old"})
        config = _config(body={"name": "a"}, ephemeral_body={"pw": "new"})

        resource.update(_state(body={"name": "a"}), config, private)

        assert json.loads(server.calls("PUT")[0].content) == {"name": "a", "pw": "new"}
        assert not EphemeralBodyManager(private).diff({"pw": "new"})

    def test_ephemeral_recorded_when_poll_fails(self, server, client, private, token):
        server.add("PUT", "/things/7", json={"status": "Pending"})
        server.add("GET", "/things/7", json={"status": "Failed"})
        EphemeralBodyManager(private).set({"secret": "old"})
        config = _config(
            body={"a": 1},
            ephemeral_body={"secret": "new"},
            poll_update={"status_locator": "body.status", "status": {"success": "Succeeded", "pending": ["Pending"]}},
        )

        with pytest.raises(PollFailure):
            Resource(client).update(_state(body={"a": 1}), config, private, token)

        assert json.loads(server.calls("PUT")[0].content) == {"a": 1, "secret": "new"}
        assert EphemeralBodyManager(private).diff({"secret": "new"}) is False

    def test_body_patches(self, server, resource, private):
        server.add("PUT", "/things/7", json={})
        server.add("GET", "/things/7", json={"name": "b"})
        config = _config(
            body={"name": "b", "immutable": "x"},
            update_body_patches=[
                {"path": "immutable", "removed": True},
                {"path": "meta.etag", "raw_json": '"$(body.etag)"'},
            ],
        )

        resource.update(_state(body={"name": "a", "immutable": "x"}, output={"etag": "v1"}), config, private)

        assert json.loads(server.calls("PUT")[0].content) == {"name": "b", "meta": {"etag": "v1"}}

    def test_update_path(self, server, resource, private):
        server.add("POST", "/things/7/update", json={})
        server.add("GET", "/things/7", json={"name": "b"})
        config = _config(body={"name": "b"}, update_method="POST", update_path="$(path)/$(body.id)/update")

        resource.update(_state(body={"name": "a"}, output={"id": "7"}), config, private)

        assert len(server.calls("POST", "/things/7/update")) == 1

    def test_gone_after_update(self, server, resource, private):
        server.add("PUT", "/things/7", json={})
        with pytest.raises(RestrikError, match="disappeared"):
            resource.update(_state(body={"name": "a"}), _config(body={"name": "b"}), private)


class TestDelete:
    def test_delete(self, server, resource, private):
        server.add("DELETE", "/things/7", 204)
        EphemeralBodyManager(private).set({"pw": "x"})

        resource.delete(_state(), _config(), private)

        assert len(server.calls("DELETE", "/things/7")) == 1
        assert private.get(EPHEMERAL_BODY_KEY) is None

    def test_already_gone(self, server, resource, private):
        resource.delete(_state(), _config(), private)
        assert len(server.calls("DELETE")) == 1

    def test_post_delete_not_found_fails(self, server, resource, private):
        config = _config(delete_method="POST", delete_path="$(path)/$(body.id)/remove")
        with pytest.raises(HTTPError):
            resource.delete(_state(output={"id": "7"}), config, private)
        assert len(server.calls("POST", "/things/7/remove")) == 1

    def test_delete_body_raw(self, server, resource, private):
        server.add("DELETE", "/things/7", 200)
        config = _config(delete_body_raw='{"etag": "$(body.etag)"}')

        resource.delete(_state(output={"etag": "v1"}), config, private)

        assert json.loads(server.calls("DELETE")[0].content) == {"etag": "v1"}

    def test_polls_location(self, server, client, private, token):
        server.add("DELETE", "/things/7", 202, headers={"Location": "/ops/9"})
        server.add("GET", "/ops/9", 202).add("GET", "/ops/9", 202).add("GET", "/ops/9", 200)
        config = _config(
            poll_delete={
                "status_locator": "code",
                "url_locator": "header.location",
                "status": {"success": "200", "pending": ["202"]},
            }
        )

        Resource(client).delete(_state(), config, private, token)

        assert len(server.calls("GET", "/ops/9")) == 3


class TestModifyPlan:
    def test_force_new(self, resource, private):
        config = _config(body={"location": "y", "name": "a"}, force_new_attrs=["location"])
        plan = resource.modify_plan(_state(body={"location": "x", "name": "a"}), config, private)
        assert plan.requires_replace == ["body"]

    def test_other_change_in_place(self, resource, private):
        config = _config(body={"location": "x", "name": "b"}, force_new_attrs=["location"])
        plan = resource.modify_plan(_state(body={"location": "x", "name": "a"}), config, private)
        assert plan.requires_replace == []

    def test_ephemeral_change_unknown_output(self, resource, private):
        EphemeralBodyManager(private).set({"pw": "a"})
        plan = resource.modify_plan(_state(body={}), _config(body={}, ephemeral_body={"pw": "b"}), private)
        assert plan.output_unknown

    def test_create(self, resource, private):
        plan = resource.modify_plan(None, _config(body={}), private)
        assert plan.requires_replace == [] and not plan.output_unknown


class TestImport:
    def test_import_then_read(self, server, resource, private):
        server.add("GET", "/things/7", json={"id": "7", "name": "a", "extra": True})
        state = resource.import_state('{"id": "/things/7", "path": "/things", "body": {"name": null}}')
        assert state.importing

        result = resource.read(state, private)

        assert result.body == {"name": "a"}
        assert not result.importing

    def test_import_without_body(self, server, resource, private):
        server.add("GET", "/things/7", json={"id": "7"})
        state = resource.import_state('{"id": "/things/7", "path": "/things"}')
        assert resource.read(state, private).body == {"id": "7"}

    def test_invalid_identity(self, resource):
        with pytest.raises(ConfigError, match="identity"):
            resource.import_state('{"path": "/things"}')

    def test_identity_nullifies_body(self, resource):
        state = _state(body={"name": "a", "props": {"size": 1}}, query={"v": ["1"]})

        identity = json.loads(resource.identity(state))

        assert identity == {
            "id": "/things/7",
            "path": "/things",
            "query": {"v": ["1"]},
            "body": {"name": None, "props": {"size": None}},
        }


class TestBaseURLOverride:
    def test_create_and_read_use_resource_base_url(self, server, resource, private):
        server.add("POST", "/v2/things", 201, json={"id": "7"})
        server.add("GET", "/v2/things/7", json={"id": "7", "name": "a"})
        config = _config(base_url="https://other.test/v2", body={"name": "a"}, read_path="$(path)/$(body.id)")

        state = resource.create(config, private)

        assert state.base_url == "https://other.test/v2"
        assert {r.url.host for r in server.requests} == {"other.test"}

    def test_delete_follows_state(self, server, resource, private):
        server.add("DELETE", "/v2/things/7", 204)
        state = _state(base_url="https://other.test/v2", body={})

        resource.delete(state, _config(), private)

        assert server.calls("DELETE")[0].url.host == "other.test"
