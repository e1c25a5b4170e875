"""Loading of engine configuration, VM declarations and snapshots."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ruamel.yaml import YAML
from pydantic import ValidationError

from stratus.errors import ConfigurationError
from stratus.models.config import StratusConfig
from stratus.models.state import ObservedState
from stratus.models.vm import VMSpec


logger = logging.getLogger(__name__)


class ConfigManager:
    """Manages configuration and snapshot files.

    Layout of the configuration directory:

        config.yaml      engine settings
        vms/*.yaml       mapping of VM name to its declaration
    """

    def __init__(self, config_dir: Path):
        """Initialize configuration manager."""
        self.config_dir = Path(config_dir)
        self.yaml = YAML()
        self.yaml.preserve_quotes = True
        self.config: Optional[StratusConfig] = None
        self.vms: Dict[str, VMSpec] = {}

    async def load(self):
        """Load all configuration files.

        Raises:
            ConfigurationError: listing every invalid file or declaration
        """
        logger.info(f"Loading configuration from {self.config_dir}")
        self._load_main_config()
        self._load_vms()
        logger.info(f"Configuration loaded: {len(self.vms)} VM(s)")

    def _load_main_config(self):
        config_file = self.config_dir / "config.yaml"
        if not config_file.exists():
            logger.warning(f"Main config not found: {config_file}, using defaults")
            self.config = StratusConfig()
            return

        try:
            self.config = StratusConfig(**self._read_yaml(config_file))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid main config {config_file}: {e}") from e
        logger.debug(f"Loaded main config: {config_file}")

    def _load_vms(self):
        vms_dir = self.config_dir / "vms"
        if not vms_dir.exists():
            logger.warning(f"VMs directory not found: {vms_dir}")
            return

        self.vms.clear()
        problems: List[str] = []
        for yaml_file in sorted(vms_dir.glob("*.yaml")):
            data = self._read_yaml(yaml_file)
            for name, spec in data.items():
                if name in self.vms:
                    problems.append(f"{yaml_file.name}: VM {name} is declared more than once")
                    continue
                try:
                    self.vms[name] = VMSpec(name=name, **(spec or {}))
                except (ValidationError, TypeError) as e:
                    problems.append(f"{yaml_file.name}: VM {name}: {e}")
            logger.debug(f"Loaded VMs from {yaml_file}")

        if problems:
            for problem in problems:
                logger.error(problem)
            raise ConfigurationError("\n".join(problems))

    def _read_yaml(self, file_path: Path) -> Dict[str, Any]:
        """Read and parse YAML file."""
        try:
            data = self.yaml.load(file_path.read_text())
        except Exception as e:
            raise ConfigurationError(f"Cannot parse {file_path}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{file_path} must contain a mapping")
        return data

    def get_vm_spec(self, name: str) -> Optional[VMSpec]:
        """Get VM declaration by name."""
        return self.vms.get(name)

    @property
    def state_dir(self) -> Path:
        state_dir = Path((self.config or StratusConfig()).state_dir)
        if not state_dir.is_absolute():
            state_dir = self.config_dir / state_dir
        return state_dir

    def snapshot_path(self, name: str) -> Path:
        return self.state_dir / f"{name}.yaml"

    def save_snapshot(self, state: ObservedState, path: Optional[Path] = None) -> Path:
        """Write a snapshot as YAML, by default under the state directory."""
        path = Path(path) if path else self.snapshot_path(state.name)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as f:
            self.yaml.dump(state.model_dump(mode="json"), f)
        logger.debug(f"Saved snapshot of {state.name} to {path}")
        return path

    def load_snapshot(self, path: Path) -> ObservedState:
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Snapshot not found: {path}")
        try:
            return ObservedState(**self._read_yaml(path))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid snapshot {path}: {e}") from e
