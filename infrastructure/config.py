"""
SPECGRAPH CONFIGURATION - Factory Defaults + Local Overrides

Configuration is loaded once from TOML and frozen into msgspec structs that
the engine components receive explicitly.

Resolution order:
    config/specgraph.local.toml  (optional, deep-merged over)
    config/specgraph.toml        (factory file)
    built-in defaults            (when the merged result fails validation)

Usage:
    from infrastructure.config import load_config

    config = load_config()
    roots = config.project_roots()   # absolute Paths of the active workspace
"""
import msgspec
from typing import Optional, Dict, Any, List, Union
from pathlib import Path
import copy
import logging
import re
import tomllib
import warnings

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).parent.parent / "config"
FACTORY_FILE = "specgraph.toml"
LOCAL_FILE = "specgraph.local.toml"

REVIEW_VALUES = ("Required", "Not Required")
REVIEW_FIELDS = ("analysis_review", "design_review", "requirements_review", "code_review")
_OWNER_RE = re.compile(r"^[a-zA-Z0-9\s\-_.]+$")


# =============================================================================
# CONFIG STRUCTS
# =============================================================================

class ProjectPath(msgspec.Struct, kw_only=True, frozen=True):
    """A storage root entry with display extras (icon is ignored by the engine)."""
    path: str
    icon: Optional[str] = None


class WorkspaceConfig(msgspec.Struct, kw_only=True, frozen=True):
    """A named set of storage roots."""
    id: str
    name: str = ""
    description: str = ""
    project_paths: List[Union[str, ProjectPath]] = []

    def path_strings(self) -> List[str]:
        return [p if isinstance(p, str) else p.path for p in self.project_paths]


class StorageConfig(msgspec.Struct, kw_only=True, frozen=True):
    """How documents are stored on disk."""
    working_dir: str = "."
    document_extension: str = ".md"
    backup_dir: str = "backup"
    excluded_dirs: List[str] = msgspec.field(
        default_factory=lambda: ["node_modules", "site-packages", ".git", "__pycache__", ".venv", "venv"]
    )


class DefaultsConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Values stamped into new documents and placeholder table rows."""
    owner: str = "Product Team"
    analysis_review: str = "Required"
    design_review: str = "Required"
    requirements_review: str = "Required"
    code_review: str = "Not Required"
    enabler_status: str = "In Draft"
    enabler_approval: str = "Not Approved"
    enabler_priority: str = "High"
    row_status: str = "Draft"
    row_approval: str = "Not Approved"
    row_priority: str = "High"
    version: str = "1.0"


class LoggingConfig(msgspec.Struct, kw_only=True, frozen=True):
    level: str = "INFO"
    enable_file_log: bool = False
    log_path: str = "./workspace/logs"
    buffer_size: int = 10000


class EngineConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Complete engine configuration."""
    workspaces: List[WorkspaceConfig] = []
    active_workspace: str = "ws-default"
    templates: str = "./templates"
    storage: StorageConfig = msgspec.field(default_factory=StorageConfig)
    defaults: DefaultsConfig = msgspec.field(default_factory=DefaultsConfig)
    logging: LoggingConfig = msgspec.field(default_factory=LoggingConfig)

    @classmethod
    def for_roots(cls, roots: List[Union[str, Path]], **overrides) -> "EngineConfig":
        """Config with a single workspace over the given roots (tests, embedding)."""
        workspace = WorkspaceConfig(
            id="ws-default", name="Default Workspace", project_paths=[str(r) for r in roots]
        )
        return cls(workspaces=[workspace], active_workspace="ws-default", **overrides)

    def active(self) -> WorkspaceConfig:
        for workspace in self.workspaces:
            if workspace.id == self.active_workspace:
                return workspace
        raise KeyError(f"Active workspace not found: {self.active_workspace}")

    def base_dir(self) -> Path:
        return Path(self.storage.working_dir).expanduser().resolve()

    def project_roots(self) -> List[Path]:
        """Storage roots of the active workspace, resolved against the working dir."""
        base = self.base_dir()
        return [(base / p).resolve() for p in self.active().path_strings()]

    def templates_dir(self) -> Path:
        return (self.base_dir() / self.templates).resolve()


# =============================================================================
# DEFAULTS
# =============================================================================

def default_config_dict() -> Dict[str, Any]:
    """Built-in configuration used when no valid TOML is available."""
    return {
        "workspaces": [
            {
                "id": "ws-default",
                "name": "Default Workspace",
                "description": "Default workspace",
                "project_paths": ["../specifications"],
            }
        ],
        "active_workspace": "ws-default",
        "templates": "./templates",
    }


# =============================================================================
# LOADING
# =============================================================================

def deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge `source` over `target` without mutating either.

    Nested tables merge key by key; lists and scalars from `source` replace.
    """
    result = copy.deepcopy(target)
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _read_toml(path: Path) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _table(config: Dict[str, Any], name: str, errors: List[str]) -> Dict[str, Any]:
    """config[name] when it is a table; a missing one reads as empty."""
    value = config.get(name, {})
    if not isinstance(value, dict):
        errors.append(f"Config {name} must be a table")
        return {}
    return value


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Validate a merged configuration dict.

    Returns:
        List of error messages (empty when valid)
    """
    errors: List[str] = []

    if not isinstance(config, dict):
        return ["Config must be a table"]

    workspaces = config.get("workspaces")
    if not isinstance(workspaces, list):
        errors.append("Config must have a workspaces array")
        workspaces = []

    active_id = config.get("active_workspace")
    if not isinstance(active_id, str) or not active_id:
        errors.append("Config must have an active_workspace")

    active = next((w for w in workspaces if isinstance(w, dict) and w.get("id") == active_id), None)
    if active is None:
        errors.append("Active workspace not found in workspaces array")
    else:
        paths = active.get("project_paths")
        if not isinstance(paths, list) or not paths:
            errors.append("Active workspace must have a non-empty project_paths array")

    if not isinstance(config.get("templates", "./templates"), str):
        errors.append("Config templates must be a path string")

    storage = _table(config, "storage", errors)
    extension = storage.get("document_extension", ".md")
    if not isinstance(extension, str) or not extension.startswith("."):
        errors.append("storage.document_extension must start with '.'")

    defaults = _table(config, "defaults", errors)
    owner = defaults.get("owner")
    if owner is not None and (not isinstance(owner, str) or not _OWNER_RE.match(owner)):
        errors.append("defaults.owner must be a valid name string")
    for field in REVIEW_FIELDS:
        value = defaults.get(field)
        if value is not None and value not in REVIEW_VALUES:
            errors.append(f"defaults.{field} must be either 'Required' or 'Not Required'")

    buffer_size = _table(config, "logging", errors).get("buffer_size", 1)
    if not isinstance(buffer_size, int) or buffer_size < 1:
        errors.append("logging.buffer_size must be a positive integer")

    return errors


def load_config_dict(config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load factory config and deep-merge local overrides.

    Falls back to built-in defaults if the merged result is invalid.
    """
    config_dir = Path(config_dir) if config_dir else CONFIG_DIR

    factory: Dict[str, Any] = {}
    factory_path = config_dir / FACTORY_FILE
    try:
        factory = _read_toml(factory_path)
        logger.debug("Factory config loaded from %s", factory_path)
    except FileNotFoundError:
        logger.info("No factory config at %s, using built-in defaults", factory_path)
        return default_config_dict()
    except tomllib.TOMLDecodeError as e:
        warnings.warn(f"Failed to parse {factory_path}: {e}")
        return default_config_dict()

    overrides: Dict[str, Any] = {}
    local_path = config_dir / LOCAL_FILE
    if local_path.exists():
        try:
            overrides = _read_toml(local_path)
            logger.info("Local config overrides loaded: %s", sorted(overrides))
        except tomllib.TOMLDecodeError as e:
            warnings.warn(f"Ignoring local overrides in {local_path}: {e}")

    merged = deep_merge(factory, overrides)
    errors = validate_config(merged)
    if errors:
        for error in errors:
            logger.error("Config validation: %s", error)
        warnings.warn("Configuration validation failed; using default configuration")
        return default_config_dict()
    return merged


def load_config(config_dir: Optional[Path] = None, working_dir: Optional[Path] = None) -> EngineConfig:
    """
    Load the engine configuration.

    Args:
        config_dir: Directory holding specgraph.toml (default: ./config next to the packages)
        working_dir: Overrides storage.working_dir (roots resolve against it)
    """
    data = load_config_dict(config_dir)
    if working_dir is not None:
        data = deep_merge(data, {"storage": {"working_dir": str(working_dir)}})
    try:
        return msgspec.convert(data, EngineConfig)
    except msgspec.ValidationError as e:
        logger.error("Config validation: %s", e)
        warnings.warn("Configuration validation failed; using default configuration")
        fallback = default_config_dict()
        if working_dir is not None:
            fallback = deep_merge(fallback, {"storage": {"working_dir": str(working_dir)}})
        return msgspec.convert(fallback, EngineConfig)
