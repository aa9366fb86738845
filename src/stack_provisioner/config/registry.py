"""Resource type registry factories."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from stack_provisioner.config.modules import ModuleExpansionError, resolve_callable
from stack_provisioner.engine.registry import ResourceTypeRegistry
from stack_provisioner.handlers.simulated import SimulatedHandler
from stack_provisioner.resources.catalog import BUILTIN_SCHEMAS

if TYPE_CHECKING:
    from pathlib import Path

    from stack_provisioner.config.schema import ProviderConfig

logger = logging.getLogger(__name__)

PROVIDERS_ENTRY_POINT_GROUP = "stack_provisioner.providers"


def default_registry() -> ResourceTypeRegistry:
    """Create a fresh registry with all built-in resource types, simulated."""
    registry = ResourceTypeRegistry()
    for resource_type, schema in BUILTIN_SCHEMAS.items():
        registry.register(resource_type, schema, SimulatedHandler(resource_type, schema))
    return registry


def load_registry(provider: ProviderConfig, config_dir: Path) -> ResourceTypeRegistry:
    """Build the registry named by ``provider.factory`` (default: simulated)."""
    if provider.factory is None:
        return default_registry()

    factory = resolve_callable(provider.factory, config_dir, group=PROVIDERS_ENTRY_POINT_GROUP)
    try:
        registry = factory()
    except Exception as exc:
        raise ModuleExpansionError(
            f"Provider factory '{provider.factory}' raised {type(exc).__name__}: {exc}"
        ) from exc
    if not isinstance(registry, ResourceTypeRegistry):
        raise ModuleExpansionError(
            f"Provider factory '{provider.factory}' must return a ResourceTypeRegistry"
        )
    logger.debug("Loaded provider %s (%d types)", provider.factory, len(registry.resource_types()))
    return registry
