"""Configuration and state models."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, Field, model_validator


def _coerce_query(value: Any) -> Any:
    """Accept ``{"k": "v"}`` as shorthand for ``{"k": ["v"]}``."""
    if isinstance(value, dict):
        return {k: v if isinstance(v, list) else [v] for k, v in value.items()}
    return value


def _coerce_header(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: v if isinstance(v, str) else str(v) for k, v in value.items()}
    return value


Query = Annotated[dict[str, list[str]], BeforeValidator(_coerce_query)]
Header = Annotated[dict[str, str], BeforeValidator(_coerce_header)]

CreateMethod = Literal["POST", "PUT", "PATCH"]
UpdateMethod = Literal["PUT", "PATCH", "POST"]
DeleteMethod = Literal["DELETE", "POST", "PUT", "PATCH"]
OperationMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]
ReadMethod = Literal["GET", "POST", "HEAD"]


class _Model(BaseModel):
    model_config = {"extra": "forbid"}


# -- Provider --


class RetryOption(_Model):
    """Retry policy applied to every request."""

    status_codes: list[int] = Field(default_factory=list)
    count: int = Field(default=3, ge=0)
    wait_in_sec: float = Field(default=1, ge=0)
    max_wait_in_sec: float = Field(default=30, ge=0)


class HTTPAuth(_Model):
    type: Literal["basic", "token"]
    username: str = ""
    password: str = ""
    token: str = ""
    scheme: str = "Bearer"


class APIKey(_Model):
    model_config = {"extra": "forbid", "populate_by_name": True}

    name: str
    location: Literal["header", "query", "cookie"] = Field(alias="in")
    value: str


class SecurityConfig(_Model):
    """Static credentials; token acquisition flows are out of scope."""

    http: HTTPAuth | None = None
    apikey: list[APIKey] = Field(default_factory=list)


class ProviderConfig(_Model):
    base_url: str
    create_method: CreateMethod = "POST"
    update_method: UpdateMethod = "PUT"
    delete_method: DeleteMethod = "DELETE"
    merge_patch_disabled: bool = False
    query: Query = Field(default_factory=dict)
    header: Header = Field(default_factory=dict)
    cookie_enabled: bool = False
    tls_insecure_skip_verify: bool = False
    timeout_in_sec: float = Field(default=60, gt=0)
    retry: RetryOption | None = None
    security: SecurityConfig | None = None


# -- Polling and prechecks --


class PollStatus(_Model):
    success: str
    pending: list[str] = Field(default_factory=list)


class PollConfig(_Model):
    status_locator: str
    status: PollStatus
    url_locator: str | None = None
    header: Header = Field(default_factory=dict)
    query: Query = Field(default_factory=dict)
    default_delay_sec: int = Field(default=10, ge=0)


class PrecheckAPI(_Model):
    status_locator: str
    status: PollStatus
    path: str | None = None
    query: Query = Field(default_factory=dict)
    header: Header = Field(default_factory=dict)
    default_delay_sec: int = Field(default=10, ge=0)


class PrecheckStep(_Model):
    """Exactly one of ``api`` or ``mutex``."""

    api: PrecheckAPI | None = None
    mutex: str | None = None

    @model_validator(mode="after")
    def _one_of(self) -> PrecheckStep:
        if (self.api is None) == (self.mutex is None):
            raise ValueError("exactly one of 'api' or 'mutex' must be set")
        return self


# -- Resources --


class PostCreateRead(_Model):
    path: str
    query: Query = Field(default_factory=dict)
    header: Header = Field(default_factory=dict)
    selector: str | None = None


class BodyPatch(_Model):
    path: str
    raw_json: str | None = None
    removed: bool = False

    @model_validator(mode="after")
    def _one_of(self) -> BodyPatch:
        if (self.raw_json is None) == (not self.removed):
            raise ValueError("exactly one of 'raw_json' or 'removed' must be set")
        return self


class ResourceConfig(_Model):
    """Desired configuration of a fully managed resource."""

    path: str
    base_url: str | None = None
    body: Any = None
    ephemeral_body: Any = None

    create_selector: str | None = None
    read_selector: str | None = None
    read_response_template: str | None = None
    post_create_read: PostCreateRead | None = None

    read_path: str | None = None
    update_path: str | None = None
    delete_path: str | None = None

    create_method: CreateMethod | None = None
    update_method: UpdateMethod | None = None
    delete_method: DeleteMethod | None = None

    precheck_create: list[PrecheckStep] = Field(default_factory=list)
    precheck_update: list[PrecheckStep] = Field(default_factory=list)
    precheck_delete: list[PrecheckStep] = Field(default_factory=list)

    delete_body: Any = None
    delete_body_raw: str | None = None
    update_body_patches: list[BodyPatch] = Field(default_factory=list)

    poll_create: PollConfig | None = None
    poll_update: PollConfig | None = None
    poll_delete: PollConfig | None = None

    write_only_attrs: list[str] = Field(default_factory=list)
    merge_patch_disabled: bool | None = None

    query: Query = Field(default_factory=dict)
    create_query: Query = Field(default_factory=dict)
    read_query: Query = Field(default_factory=dict)
    update_query: Query = Field(default_factory=dict)
    delete_query: Query = Field(default_factory=dict)

    header: Header = Field(default_factory=dict)
    create_header: Header = Field(default_factory=dict)
    read_header: Header = Field(default_factory=dict)
    update_header: Header = Field(default_factory=dict)
    delete_header: Header = Field(default_factory=dict)

    check_existance: bool = False
    force_new_attrs: list[str] = Field(default_factory=list)
    output_attrs: list[str] = Field(default_factory=list)


class ResourceState(_Model):
    """Persisted state of a managed resource.

    ``importing`` routes the next read through the import projection;
    the managed document itself never carries a marker.
    """

    id: str
    path: str
    body: Any = None
    output: Any = None
    importing: bool = False
    base_url: str | None = None

    read_path: str | None = None
    update_path: str | None = None
    delete_path: str | None = None
    create_method: CreateMethod | None = None
    update_method: UpdateMethod | None = None
    delete_method: DeleteMethod | None = None
    write_only_attrs: list[str] = Field(default_factory=list)
    read_selector: str | None = None
    read_response_template: str | None = None
    output_attrs: list[str] = Field(default_factory=list)
    query: Query = Field(default_factory=dict)
    read_query: Query = Field(default_factory=dict)
    header: Header = Field(default_factory=dict)
    read_header: Header = Field(default_factory=dict)

    @classmethod
    def from_config(cls, config: ResourceConfig, *, id: str, body: Any) -> ResourceState:
        return cls(
            id=id,
            path=config.path,
            base_url=config.base_url,
            body=body,
            read_path=config.read_path,
            update_path=config.update_path,
            delete_path=config.delete_path,
            create_method=config.create_method,
            update_method=config.update_method,
            delete_method=config.delete_method,
            write_only_attrs=list(config.write_only_attrs),
            read_selector=config.read_selector,
            read_response_template=config.read_response_template,
            output_attrs=list(config.output_attrs),
            query=dict(config.query),
            read_query=dict(config.read_query),
            header=dict(config.header),
            read_header=dict(config.read_header),
        )


class PlanModification(_Model):
    requires_replace: list[str] = Field(default_factory=list)
    output_unknown: bool = False


# -- Operations and actions --


class OperationConfig(_Model):
    path: str
    method: OperationMethod = "POST"
    body: Any = None
    ephemeral_body: Any = None
    query: Query = Field(default_factory=dict)
    header: Header = Field(default_factory=dict)
    id_builder: str | None = None
    precheck: list[PrecheckStep] = Field(default_factory=list)
    poll: PollConfig | None = None
    output_attrs: list[str] = Field(default_factory=list)

    delete_method: OperationMethod | None = None
    delete_path: str | None = None
    delete_body: Any = None
    delete_body_raw: str | None = None
    delete_query: Query = Field(default_factory=dict)
    delete_header: Header = Field(default_factory=dict)
    precheck_delete: list[PrecheckStep] = Field(default_factory=list)
    poll_delete: PollConfig | None = None


class OperationState(_Model):
    id: str
    output: Any = None


class ActionConfig(_Model):
    path: str
    method: OperationMethod = "POST"
    body: Any = None
    query: Query = Field(default_factory=dict)
    header: Header = Field(default_factory=dict)
    precheck: list[PrecheckStep] = Field(default_factory=list)
    poll: PollConfig | None = None


# -- Ephemeral resources --


class EphemeralConfig(_Model):
    path: str
    method: OperationMethod = "POST"
    body: Any = None
    query: Query = Field(default_factory=dict)
    header: Header = Field(default_factory=dict)
    output_attrs: list[str] = Field(default_factory=list)

    expiry_type: str | None = None
    expiry_locator: str | None = None
    expiry_unit: str | None = None
    expiry_ahead: str | None = None

    renew_method: OperationMethod | None = None
    renew_path: str | None = None
    renew_body: Any = None
    renew_body_raw: str | None = None
    renew_query: Query = Field(default_factory=dict)
    renew_header: Header = Field(default_factory=dict)

    close_method: OperationMethod | None = None
    close_path: str | None = None
    close_body: Any = None
    close_body_raw: str | None = None
    close_query: Query = Field(default_factory=dict)
    close_header: Header = Field(default_factory=dict)


class EphemeralCall(_Model):
    """A renew or close request kept in private storage between phases."""

    method: OperationMethod
    path: str
    body: Any = None
    default_query: Query = Field(default_factory=dict)
    query: Query = Field(default_factory=dict)
    default_header: Header = Field(default_factory=dict)
    header: Header = Field(default_factory=dict)
    expiry_type: str | None = None
    expiry_locator: str | None = None
    expiry_unit: str | None = None
    expiry_ahead: str | None = None
    output: Any = None


# -- Read-only surfaces --


class DataSourceConfig(_Model):
    path: str
    method: ReadMethod = "GET"
    body: Any = None
    query: Query = Field(default_factory=dict)
    header: Header = Field(default_factory=dict)
    selector: str | None = None
    output_attrs: list[str] = Field(default_factory=list)
    allow_not_exist: bool = False
    precheck: list[PrecheckStep] = Field(default_factory=list)


class ListConfig(_Model):
    path: str
    method: ReadMethod = "GET"
    body: Any = None
    query: Query = Field(default_factory=dict)
    header: Header = Field(default_factory=dict)
    selector: str | None = None
    name: str = "$(body.name)"

    resource_id: str = "$(body.id)"
    resource_path: str | None = None
    resource_query: Query = Field(default_factory=dict)
    resource_header: Header = Field(default_factory=dict)
    resource_body: Any = None
    resource_read_selector: str | None = None
    resource_read_response_template: str | None = None


class ImportSpec(_Model):
    """Identity blob that seeds an imported resource before its first read."""

    id: str = Field(min_length=1)
    path: str = Field(min_length=1)
    query: Query | None = None
    header: Header | None = None
    body: Any = None
    read_selector: str | None = None
    read_response_template: str | None = None
