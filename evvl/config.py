from __future__ import annotations

import os
from pathlib import Path

import yaml

from evvl.models import CliConfig

# ~/.evvl is shared with the GUI; EVVL_HOME relocates it (tests, sandboxes).
HOME_ENV_VAR = "EVVL_HOME"
LOCAL_CONFIG_NAME = ".evvl.yaml"


def default_home() -> Path:
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".evvl"


def load_cli_config(
    home: Path,
    overrides: dict[str, object] | None = None,
    cwd: Path | None = None,
) -> CliConfig:
    """Load CliConfig with a three-layer precedence:

    1. Global config   (<home>/config.yaml)
    2. Local config    (<cwd>/.evvl.yaml)
    3. CLI overrides   (the ``overrides`` dict)
    """
    base: dict[str, object] = {}

    for cfg_path in [home / "config.yaml", (cwd or Path.cwd()) / LOCAL_CONFIG_NAME]:
        base.update(_load_yaml_dict(cfg_path))

    if overrides:
        for k, v in overrides.items():
            if v is not None:
                base[k] = v

    return CliConfig.model_validate(base)


def store_path(home: Path, config: CliConfig) -> Path:
    return home / config.store_filename


def _load_yaml_dict(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text()) or {}
    return data if isinstance(data, dict) else {}
