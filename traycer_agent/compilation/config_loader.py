from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from jsonschema import Draft7Validator

from ..capabilities.external import ServerConfig
from ..error_handling import ConfigError
from ..phases.prompts import MODES, ModePolicy
from ..phases.runner import DEFAULT_MAX_ITERATIONS
from ..provider_routing import PROVIDER_DEFAULTS, LLMClientConfig, resolve_client_config


_STRING_LIST = {"type": "array", "items": {"type": "string"}}

CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "extends": {"anyOf": [{"type": "string"}, _STRING_LIST]},
        "llm": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "provider": {"type": "string", "enum": sorted(PROVIDER_DEFAULTS)},
                "api_key": {"type": "string"},
                "base_url": {"type": "string"},
                "model": {"type": "string"},
                "timeout": {"type": "number", "exclusiveMinimum": 0},
            },
        },
        "loop": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "max_iterations": {"type": "integer", "minimum": 1},
            },
        },
        "modes": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "default": {"type": "string", "enum": list(MODES)},
                "keywords": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["keyword", "mode"],
                        "additionalProperties": False,
                        "properties": {
                            "keyword": {"type": "string", "minLength": 1},
                            "mode": {"type": "string", "enum": list(MODES)},
                        },
                    },
                },
            },
        },
        "mcp_servers": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "required": ["command"],
                "additionalProperties": False,
                "properties": {
                    "command": {"type": "string", "minLength": 1},
                    "args": _STRING_LIST,
                    "env": {"type": "object", "additionalProperties": {"type": ["string", "number", "boolean"]}},
                    "disabled": {"type": "boolean"},
                },
            },
        },
    },
}


@dataclass
class AgentConfig:
    """Resolved configuration: the only thing the core consumes."""

    llm: LLMClientConfig
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    mode_policy: ModePolicy = field(default_factory=ModePolicy)
    servers: Dict[str, ServerConfig] = field(default_factory=dict)
    source: Optional[str] = None


def _load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if doc is None:
        return {}
    if not isinstance(doc, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return doc


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursive dict merge; lists and scalars in ``override`` replace."""
    out: Dict[str, Any] = dict(base)
    for k, v in (override or {}).items():
        if isinstance(out.get(k), dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _resolve_extends(doc: Dict[str, Any], config_path: Path, seen: Optional[List[Path]] = None) -> Dict[str, Any]:
    extends_val = doc.get("extends")
    if not extends_val:
        return doc
    seen = list(seen or []) + [config_path]
    paths = list(extends_val) if isinstance(extends_val, (list, tuple)) else [extends_val]

    merged: Dict[str, Any] = {}
    for rel in paths:
        base_path = (config_path.parent / str(rel)).resolve()
        if base_path in seen:
            raise ConfigError(f"Circular extends: {base_path}")
        base_doc = _load_yaml(base_path)
        merged = _deep_merge(merged, _resolve_extends(base_doc, base_path, seen))
    return _deep_merge(merged, {k: v for k, v in doc.items() if k != "extends"})


def validate_config(doc: Dict[str, Any]) -> None:
    errors = sorted(Draft7Validator(CONFIG_SCHEMA).iter_errors(doc), key=lambda e: list(e.absolute_path))
    if not errors:
        return
    first = errors[0]
    location = ".".join(str(p) for p in first.absolute_path) or "<root>"
    raise ConfigError(f"Invalid configuration at {location}: {first.message}", details={"errors": len(errors)})


def build_agent_config(doc: Dict[str, Any], source: Optional[str] = None) -> AgentConfig:
    validate_config(doc)

    llm_section = doc.get("llm") or {}
    llm = resolve_client_config(
        provider=llm_section.get("provider"),
        api_key=llm_section.get("api_key"),
        base_url=llm_section.get("base_url"),
        model=llm_section.get("model"),
        timeout=llm_section.get("timeout"),
    )

    servers = {
        name: ServerConfig.from_dict(entry)
        for name, entry in (doc.get("mcp_servers") or {}).items()
    }

    return AgentConfig(
        llm=llm,
        max_iterations=int((doc.get("loop") or {}).get("max_iterations", DEFAULT_MAX_ITERATIONS)),
        mode_policy=ModePolicy.from_config(doc.get("modes")),
        servers=servers,
        source=source,
    )


def load_agent_config(config_path_str: Optional[str] = None) -> AgentConfig:
    """Load a YAML agent config (with ``extends`` support) and validate it.

    Without a path, the defaults plus the environment are used.
    """
    if not config_path_str:
        return build_agent_config({})
    config_path = Path(config_path_str).resolve()
    doc = _resolve_extends(_load_yaml(config_path), config_path)
    return build_agent_config(doc, source=str(config_path))
