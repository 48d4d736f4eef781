"""Hydra config composition and YAML loading helpers."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
import random
from typing import Any, Optional, Union

from hydra import compose, initialize_config_dir
from hydra.core.global_hydra import GlobalHydra
from hydra.errors import HydraException
import numpy as np
from omegaconf import OmegaConf
from omegaconf.errors import OmegaConfBaseException
import yaml

from rxn_calib.errors import ConfigError

DEFAULT_CONFIG_PATH = "configs"
DEFAULT_CONFIG_NAME = "default"
DEFAULT_SEED_PATHS = ("common.seed", "seed")


def _normalize_config_name(config_name: str) -> str:
    if config_name.endswith((".yaml", ".yml")):
        return Path(config_name).stem
    return config_name


def _normalize_overrides(overrides: Optional[Sequence[str]]) -> list[str]:
    if not overrides:
        return []
    return [item for item in overrides if item and item != "--"]


def compose_config(
    *,
    config_path: Union[Path, str] = DEFAULT_CONFIG_PATH,
    config_name: str = DEFAULT_CONFIG_NAME,
    overrides: Optional[Sequence[str]] = None,
) -> Any:
    from rxn_calib.config.schema import register_configs

    register_configs()
    config_dir = Path(config_path)
    if not config_dir.is_absolute():
        config_dir = (Path.cwd() / config_dir).resolve()
    if not config_dir.exists():
        raise ConfigError(f"Config directory not found: {config_dir}")
    if GlobalHydra.instance().is_initialized():
        GlobalHydra.instance().clear()
    try:
        with initialize_config_dir(config_dir=str(config_dir), version_base=None):
            return compose(
                config_name=_normalize_config_name(config_name),
                overrides=_normalize_overrides(overrides),
            )
    except (HydraException, OmegaConfBaseException) as exc:
        raise ConfigError(
            f"Failed to compose config {config_name!r} from {config_dir}: {exc}",
            context={"config_dir": str(config_dir), "config_name": config_name},
        ) from exc


def resolve_config(cfg: Any) -> dict[str, Any]:
    if not OmegaConf.is_config(cfg):
        if isinstance(cfg, Mapping):
            return dict(cfg)
        raise ConfigError("Config must be a mapping or an OmegaConf node.")
    resolved = OmegaConf.to_container(cfg, resolve=True, throw_on_missing=False)
    if not isinstance(resolved, dict):
        raise ConfigError("Resolved config must be a mapping.")
    return resolved


def format_config(cfg: Any) -> str:
    if OmegaConf.is_config(cfg):
        return OmegaConf.to_yaml(cfg, resolve=True)
    return yaml.safe_dump(cfg, sort_keys=False)


def load_config(path: Union[str, Path]) -> dict[str, Any]:
    """Load a plain YAML config file (no Hydra composition)."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config not found: {path}")
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to load config from {path}: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ConfigError(f"Config in {path} must be a mapping.")
    return dict(payload)


def _select_from_mapping(cfg: Mapping[str, Any], path: str) -> Any:
    current: Any = cfg
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def _extract_seed(cfg: Any, seed_paths: Sequence[str]) -> Optional[Any]:
    for path in seed_paths:
        if OmegaConf.is_config(cfg):
            value = OmegaConf.select(cfg, path, default=None)
        elif isinstance(cfg, Mapping):
            value = _select_from_mapping(cfg, path)
        else:
            return None
        if value is not None:
            return value
    return None


def seed_everything(
    cfg: Any,
    *,
    seed_paths: Sequence[str] = DEFAULT_SEED_PATHS,
) -> Optional[int]:
    seed = _extract_seed(cfg, seed_paths)
    if seed is None:
        return None
    try:
        seed_int = int(seed)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Seed must be an integer, got {seed!r}.") from exc
    random.seed(seed_int)
    np.random.seed(seed_int)
    return seed_int


__all__ = [
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_PATH",
    "compose_config",
    "format_config",
    "load_config",
    "resolve_config",
    "seed_everything",
]
