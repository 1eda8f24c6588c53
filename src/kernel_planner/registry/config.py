"""
Planner Configuration

Manages configuration for planner sessions: plan registry location, default
cost model and device preset, and search/measurement settings.

Configuration is loaded from (in order of precedence):
1. Environment variables (KERNEL_PLANNER_REGISTRY_PATH, KERNEL_PLANNER_MODEL,
   KERNEL_PLANNER_DEVICE)
2. User config file (~/.config/kernel_planner/config.json)
3. Project config file (.kernel_planner/config.json in the project root)
4. Default values

Command-line flags override all of these.
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any


@dataclass
class PlannerConfig:
    """Configuration for planner sessions."""

    # Path to the SQLite plan registry
    registry_path: Path = field(default_factory=lambda: Path())
    """File holding stored plans; ':memory:' keeps them for one process."""

    # Cost model (approximation table) version or YAML path
    model: str = "nhwc_bnorm_v1"

    # Device preset, or "auto" to query the XPU runtime
    device: str = "max_1550"

    # Threads evaluating candidates in model mode
    workers: int = 1

    # Wall-clock budget of search and rebuild, seconds (None = unlimited)
    time_budget_s: Optional[float] = None

    # Measurement settings of benchmark and search modes
    warmup_iterations: int = 3
    measurement_iterations: int = 10

    def __post_init__(self):
        if isinstance(self.registry_path, str):
            self.registry_path = Path(self.registry_path)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result['registry_path'] = str(self.registry_path)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlannerConfig':
        """Create from dictionary."""
        data = dict(data)
        if 'registry_path' in data:
            data['registry_path'] = Path(data['registry_path'])
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def _find_project_root() -> Optional[Path]:
    """Find the project root by looking for pyproject.toml."""
    current = Path.cwd()
    for parent in [current] + list(current.parents):
        if (parent / 'pyproject.toml').exists():
            return parent
    return None


def _user_config_dir() -> Path:
    if os.name == 'nt':
        return Path(os.environ.get('APPDATA', Path.home() / 'AppData' / 'Roaming'))
    return Path(os.environ.get('XDG_CONFIG_HOME', Path.home() / '.config'))


def _get_default_registry_path() -> Path:
    """Get the default registry path (user data directory)."""
    if os.name == 'nt':
        base = Path(os.environ.get('LOCALAPPDATA', Path.home() / 'AppData' / 'Local'))
    else:
        base = Path(os.environ.get('XDG_DATA_HOME', Path.home() / '.local' / 'share'))
    return base / 'kernel_planner' / 'plans.db'


def _load_config_file(path: Path) -> Optional[Dict[str, Any]]:
    """Load configuration from a JSON file; unreadable files are ignored."""
    if path.exists():
        try:
            with open(path) as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError):
            pass
    return None


def get_config() -> PlannerConfig:
    """
    Get the planner configuration.

    Loads configuration from environment variables and config files,
    with sensible defaults.
    """
    config_data: Dict[str, Any] = {'registry_path': _get_default_registry_path()}

    # Project config (.kernel_planner/config.json)
    project_root = _find_project_root()
    if project_root:
        project_config = _load_config_file(project_root / '.kernel_planner' / 'config.json')
        if project_config:
            config_data.update(project_config)

    # User config (~/.config/kernel_planner/config.json)
    user_config = _load_config_file(_user_config_dir() / 'kernel_planner' / 'config.json')
    if user_config:
        config_data.update(user_config)

    # Environment variables (highest precedence)
    env_overrides = {
        'registry_path': 'KERNEL_PLANNER_REGISTRY_PATH',
        'model': 'KERNEL_PLANNER_MODEL',
        'device': 'KERNEL_PLANNER_DEVICE',
    }
    for key, var in env_overrides.items():
        value = os.environ.get(var)
        if value:
            config_data[key] = value

    return PlannerConfig.from_dict(config_data)


def save_config(config: PlannerConfig, path: Optional[Path] = None):
    """
    Save configuration to a file.

    Args:
        config: Configuration to save
        path: Path to save to (default: user config directory)
    """
    if path is None:
        path = _user_config_dir() / 'kernel_planner' / 'config.json'

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)
