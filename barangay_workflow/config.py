from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

CONFIG_ENV = "BARANGAY_WORKFLOW_CONFIG"
DATABASE_URL_ENVS = ("BARANGAY_WORKFLOW_DATABASE_URL", "DATABASE_URL")
DEFAULT_WORKFLOWS_FILE = "workflows.yaml"


class BarangayWorkflowConfig(BaseModel):
    """Settings read from ``config.yaml``.

    ``database_url`` picks the store backend (``sqlite://``, ``postgresql://``
    or unset for in-memory). ``workflows_file`` is the YAML file seeded by
    ``barangay-workflow config load`` when no path is given.
    """

    database_url: Optional[str] = None
    workflows_file: str = DEFAULT_WORKFLOWS_FILE
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @property
    def workflows_path(self) -> Path:
        return Path(self.workflows_file).expanduser()


def database_url_from_env() -> Optional[str]:
    for name in DATABASE_URL_ENVS:
        value = os.getenv(name)
        if value:
            return value
    return None


def load_config(path: Optional[str] = None) -> BarangayWorkflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to the
            BARANGAY_WORKFLOW_CONFIG env variable or 'config.yaml' in the
            current directory. A missing file yields the defaults.
    """

    config_file = Path(path or os.getenv(CONFIG_ENV, "config.yaml"))
    data = {}
    if config_file.exists():
        data = yaml.safe_load(config_file.read_text()) or {}

    env_db_url = database_url_from_env()
    if env_db_url:
        data["database_url"] = env_db_url
    return BarangayWorkflowConfig(**data)
