"""Concrete scaffolding strategies and their anchor tables."""

from __future__ import annotations

from typing import Any

from serverkit.engine.anchors import AnchorTable
from serverkit.engine.orchestrator import ScaffoldStrategy
from serverkit.strategies.auth import AUTH_ANCHORS, AuthScaffoldStrategy
from serverkit.strategies.binding import BINDING_ANCHORS, BindingScaffoldStrategy
from serverkit.strategies.configs import (
    AuthConfig,
    BindingConfig,
    EntityConfig,
    ResourceOptions,
    parse_config,
)
from serverkit.strategies.entity import ENTITY_ANCHORS, EntityScaffoldStrategy

DEFAULT_ANCHORS = AnchorTable.merge(ENTITY_ANCHORS, BINDING_ANCHORS, AUTH_ANCHORS)

# Config ``kind`` -> strategy class.
STRATEGIES: dict[str, type[ScaffoldStrategy[Any, Any]]] = {
    "entity": EntityScaffoldStrategy,
    "binding": BindingScaffoldStrategy,
    "auth": AuthScaffoldStrategy,
}


def strategy_for(config: EntityConfig | BindingConfig | AuthConfig, **kwargs: Any) -> ScaffoldStrategy[Any, Any]:
    """Instantiate the strategy that handles *config*."""
    return STRATEGIES[config.kind](**kwargs)


__all__ = [
    "AUTH_ANCHORS",
    "BINDING_ANCHORS",
    "DEFAULT_ANCHORS",
    "ENTITY_ANCHORS",
    "STRATEGIES",
    "AuthConfig",
    "AuthScaffoldStrategy",
    "BindingConfig",
    "BindingScaffoldStrategy",
    "EntityConfig",
    "EntityScaffoldStrategy",
    "ResourceOptions",
    "parse_config",
    "strategy_for",
]
