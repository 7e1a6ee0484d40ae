"""Workflow configuration lookup and seeding."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

import yaml
from pydantic import ValidationError

from .errors import ConfigMissing, InvalidConfiguration
from .models import WorkflowConfiguration
from .persistence import WorkflowStore

logger = logging.getLogger(__name__)


class ConfigurationLoader:
    """Read-through access to workflow configurations.

    Every lookup goes to the store so administrator edits are visible to the
    next call without any cache invalidation.
    """

    def __init__(self, store: WorkflowStore) -> None:
        self._store = store

    async def get_configuration(self, certificate_type: str) -> WorkflowConfiguration:
        config = await self._store.get_configuration(certificate_type)
        if config is None or not config.is_active:
            logger.warning(f"No active workflow configured for {certificate_type}")
            raise ConfigMissing(certificate_type)
        logger.debug(
            f"Loaded workflow for {certificate_type} with {len(config.steps)} steps"
        )
        return config

    async def save(self, config: WorkflowConfiguration) -> None:
        """Validate and store ``config``, replacing any previous version."""
        try:
            validated = WorkflowConfiguration.model_validate(config.model_dump())
        except ValidationError as exc:
            raise InvalidConfiguration(str(exc)) from exc
        await self._store.save_configuration(validated)
        logger.info(f"Saved workflow configuration for {config.certificate_type}")

    async def seed(self, path: str | Path) -> List[WorkflowConfiguration]:
        """Save every workflow defined in the YAML file at ``path``."""
        configs = load_workflows_file(path)
        for config in configs:
            await self.save(config)
        return configs


def load_workflows_file(path: str | Path) -> List[WorkflowConfiguration]:
    """Parse a YAML mapping of certificate type to workflow definition.

    Example::

        natural_death:
          config_name: Natural Death Certificate Workflow
          steps:
            - id: 1
              name: Review Request Team
              status: staff_review
              assignedUsers: [u-1, u-2]
    """

    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise InvalidConfiguration(f"{path}: expected a mapping of certificate types")

    configs: List[WorkflowConfiguration] = []
    for certificate_type, definition in data.items():
        if isinstance(definition, list):
            definition = {"steps": definition}
        try:
            configs.append(
                WorkflowConfiguration(certificate_type=certificate_type, **definition)
            )
        except (TypeError, ValidationError) as exc:
            raise InvalidConfiguration(
                f"{path}: invalid workflow for '{certificate_type}': {exc}"
            ) from exc
    return configs
