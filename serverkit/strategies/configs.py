"""Scaffold configuration models.

Each strategy accepts exactly one config variant; the variants form a closed
union discriminated by ``kind`` so a binding field can never be mistaken for
an entity field. Raw mappings (CLI arguments, JSON) go through
:func:`parse_config`.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from serverkit.errors import ConfigValidationError
from serverkit.utils import to_kebab

EntityType = Literal["tool", "prompt", "resource"]
BindingType = Literal["kv", "d1", "r2"]
AuthProviderName = Literal["stytch", "auth0", "workos"]
Platform = Literal["cloudflare", "vercel"]

_BINDING_NAME_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_RESOURCE_NAME_RE = r"^[a-z0-9][a-z0-9-]*$"


class _FrozenConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Entity
# ---------------------------------------------------------------------------


class ResourceOptions(_FrozenConfig):
    static: bool = False
    dynamic: bool = False
    uri_pattern: str | None = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _exclusive(self) -> "ResourceOptions":
        if self.static and self.dynamic:
            raise ValueError("static and dynamic resources are mutually exclusive")
        return self


def unit_test_path(entity_type: str, name: str) -> str:
    return f"test/unit/{entity_type}s/{name}.test.ts"


def integration_spec_path(entity_type: str, name: str) -> str:
    """Tool specs sit directly under ``specs/``; prompts and resources get a subdirectory."""
    if entity_type == "tool":
        return f"test/integration/specs/{name}.yaml"
    return f"test/integration/specs/{entity_type}s/{name}.yaml"


class EntityConfig(_FrozenConfig):
    kind: Literal["entity"] = "entity"
    entity_type: EntityType
    name: str = Field(..., pattern=r"^[a-z][a-z0-9-]*$", description="kebab-case entity name")
    description: str = ""
    generate_tests: bool = True
    auto_register: bool = True
    resource_options: ResourceOptions | None = None

    @model_validator(mode="after")
    def _resource_options(self) -> "EntityConfig":
        if self.entity_type == "resource" and self.resource_options is None:
            raise ValueError("resource_options is required for resources")
        if self.entity_type != "resource" and self.resource_options is not None:
            raise ValueError(f"resource_options does not apply to a {self.entity_type}")
        return self

    @property
    def plural(self) -> str:
        return f"{self.entity_type}s"

    @property
    def entity_path(self) -> str:
        return f"src/{self.plural}/{self.name}.ts"

    @property
    def unit_test_path(self) -> str:
        return unit_test_path(self.entity_type, self.name)

    @property
    def integration_spec_path(self) -> str:
        return integration_spec_path(self.entity_type, self.name)

    def uri_pattern(self) -> str:
        """Explicit pattern, else ``resource://{id}`` for dynamic resources, else ``config://<name>``."""
        options = self.resource_options or ResourceOptions()
        if options.uri_pattern:
            return options.uri_pattern
        if options.dynamic:
            return "resource://{id}"
        return f"config://{self.name}"


# ---------------------------------------------------------------------------
# Binding
# ---------------------------------------------------------------------------


class BindingConfig(_FrozenConfig):
    kind: Literal["binding"] = "binding"
    binding_type: BindingType
    binding_name: str
    database_name: str | None = Field(default=None, pattern=_RESOURCE_NAME_RE)
    bucket_name: str | None = Field(default=None, pattern=_RESOURCE_NAME_RE)
    skip_helper: bool = False

    @field_validator("binding_name")
    @classmethod
    def _upper_snake(cls, value: str) -> str:
        if not _BINDING_NAME_RE.match(value):
            raise ValueError("binding name must be UPPER_SNAKE_CASE (e.g. MY_CACHE)")
        if value.endswith("_"):
            raise ValueError("binding name must not end with an underscore")
        if "__" in value:
            raise ValueError("binding name must not contain consecutive underscores")
        return value

    @model_validator(mode="after")
    def _type_specific(self) -> "BindingConfig":
        if self.database_name is not None and self.binding_type != "d1":
            raise ValueError("database_name only applies to d1 bindings")
        if self.bucket_name is not None and self.binding_type != "r2":
            raise ValueError("bucket_name only applies to r2 bindings")
        return self

    @property
    def kebab_name(self) -> str:
        return to_kebab(self.binding_name)

    @property
    def resolved_database_name(self) -> str:
        return self.database_name or self.kebab_name

    @property
    def resolved_bucket_name(self) -> str:
        return self.bucket_name or self.kebab_name


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class AuthConfig(_FrozenConfig):
    kind: Literal["auth"] = "auth"
    provider: AuthProviderName
    platform: Platform | None = None
    force: bool = False
    type_check: bool = False


ScaffoldConfig = Annotated[
    Union[EntityConfig, BindingConfig, AuthConfig],
    Field(discriminator="kind"),
]

_config_adapter: TypeAdapter[Any] = TypeAdapter(ScaffoldConfig)


def parse_config(raw: dict[str, Any]) -> EntityConfig | BindingConfig | AuthConfig:
    """Validate a raw mapping into the matching config variant.

    Raises:
        ConfigValidationError: Listing every field problem.
    """
    try:
        return _config_adapter.validate_python(raw)
    except ValidationError as exc:
        problems = [_describe(err) for err in exc.errors()]
        raise ConfigValidationError(
            "Invalid scaffold configuration",
            problems=problems,
            suggestion="Fix the listed fields and retry",
        ) from exc


def _describe(error: dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part not in ("entity", "binding", "auth"))
    message = error.get("msg", "invalid value")
    return f"{location}: {message}" if location else message
