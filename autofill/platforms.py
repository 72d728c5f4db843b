"""
Platform configs: declarative fill programs for known ATS sites.

A config lists, per canonical profile field, the selectors that can fill
it. A selector is either a plain element path (filled with the default
value assignment) or a sequence of actions. Each action kind is its own
class so the interpreter can dispatch on type, and an unknown kind is
rejected while loading instead of silently doing nothing.

File format (durations in milliseconds):

    {"platforms": {"greenhouse": {
        "urls": ["*://boards.greenhouse.io/*"],
        "defaultMethod": "react",
        "inputSelectors": [
            ["first_name", [{"path": ["//input[@id='first_name']"]}]],
            ["location", [{"actions": [
                {"op": "set_value", "path": "//input[@id='candidate-location']"},
                {"op": "click", "path": "%INPUTPATH%/following::li[1]", "time": 2000}
            ]}]]
        ]
    }}}
"""

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from .config import PLATFORM_CONFIGS_PATH, DEFAULT_WAIT_TIMEOUT
from .errors import ConfigError

logger = logging.getLogger(__name__)

FILL_METHODS = ("react", "plain")

# Path placeholders
CONTEXT_PLACEHOLDER = "%INPUTPATH%"
VALUE_PLACEHOLDER = "%VALUE%"
UPPER_VALUE_PLACEHOLDER = "%UPPERVALUE%"
LOWER_VALUE_PLACEHOLDER = "%LOWERVALUE%"


# ============ Actions ============

@dataclass(frozen=True)
class Action:
    path: Tuple[str, ...] = ()
    delay: float = 0.0          # seconds before the step runs
    timeout: float = 0.0        # seconds to poll for the target
    allow_failure: bool = False

    kind: ClassVar[str] = ""
    needs_target: ClassVar[bool] = True

    @property
    def is_relative(self) -> bool:
        return any(CONTEXT_PLACEHOLDER in p for p in self.path)


@dataclass(frozen=True)
class Click(Action):
    kind: ClassVar[str] = "click"


@dataclass(frozen=True)
class SetValue(Action):
    method: Optional[str] = None
    kind: ClassVar[str] = "set_value"


@dataclass(frozen=True)
class DispatchEvent(Action):
    event: str = ""
    options: Dict[str, Any] = field(default_factory=dict)
    kind: ClassVar[str] = "dispatch_event"


@dataclass(frozen=True)
class WaitForAppearance(Action):
    kind: ClassVar[str] = "wait_for_appearance"


@dataclass(frozen=True)
class WaitForRemoval(Action):
    kind: ClassVar[str] = "wait_for_removal"
    needs_target: ClassVar[bool] = False


ACTION_TYPES = {
    cls.kind: cls
    for cls in (Click, SetValue, DispatchEvent, WaitForAppearance, WaitForRemoval)
}
ACTION_ALIASES = {
    "setValue": "set_value",
    "dispatchEvent": "dispatch_event",
    "waitForAppearance": "wait_for_appearance",
    "waitForRemoval": "wait_for_removal",
}


# ============ Selectors / Platforms ============

@dataclass(frozen=True)
class Selector:
    paths: Tuple[str, ...] = ()
    actions: Tuple[Action, ...] = ()
    values: Dict[str, str] = field(default_factory=dict)
    method: Optional[str] = None

    def translate(self, value: Any) -> Any:
        """Look the value up in the translation table; unknown values pass through."""
        if not self.values:
            return value
        if isinstance(value, bool):
            keys = ["true" if value else "false", str(value)]
        else:
            keys = [str(value), str(value).lower()]
        for key in keys:
            if key in self.values:
                return self.values[key]
        return value


@dataclass(frozen=True)
class PlatformConfig:
    id: str
    urls: Tuple[str, ...]
    default_method: str = "react"
    fields: Tuple[Tuple[str, Tuple[Selector, ...]], ...] = ()
    container_path: Tuple[str, ...] = ()

    @property
    def field_names(self) -> List[str]:
        return [name for name, _ in self.fields]


# ============ Parsing ============

def _ms(raw: Any, where: str) -> float:
    if raw is None:
        return 0.0
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw < 0:
        raise ConfigError(f"{where}: duration must be a non-negative number of ms, got {raw!r}")
    return raw / 1000.0


def _paths(raw: Any, where: str) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list) or not all(isinstance(p, str) and p for p in raw):
        raise ConfigError(f"{where}: path must be a string or a list of strings")
    return tuple(raw)


def _infer_kind(raw: Dict[str, Any], where: str) -> str:
    """Work out the action kind of an entry written without "op"."""
    if raw.get("removed"):
        return WaitForRemoval.kind
    if raw.get("event"):
        return DispatchEvent.kind
    method = raw.get("method")
    if method is None or method == "click":
        return Click.kind
    if method in FILL_METHODS or method == "setValue":
        return SetValue.kind
    raise ConfigError(f"{where}: unknown action method {method!r}")


def parse_action(raw: Any, where: str = "action") -> Action:
    """Build an Action from its JSON form."""
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: action must be an object")

    op = raw.get("op")
    if op is None:
        op = _infer_kind(raw, where)
    op = ACTION_ALIASES.get(op, op)
    cls = ACTION_TYPES.get(op)
    if cls is None:
        raise ConfigError(f"{where}: unknown action kind {op!r}")

    common = {
        "path": _paths(raw.get("path"), where),
        "delay": _ms(raw.get("delay"), where),
        "timeout": _ms(raw.get("time", raw.get("timeout")), where),
        "allow_failure": bool(raw.get("allowFailure", raw.get("allow_failure", False))),
    }

    if cls in (WaitForAppearance, WaitForRemoval):
        if not common["path"]:
            raise ConfigError(f"{where}: {op} needs a path")
        if not common["timeout"]:
            common["timeout"] = DEFAULT_WAIT_TIMEOUT

    if cls is SetValue:
        method = raw.get("method")
        if method == "setValue":
            method = None
        if method is not None and method not in FILL_METHODS:
            raise ConfigError(f"{where}: unknown fill method {method!r}")
        return SetValue(method=method, **common)

    if cls is DispatchEvent:
        event = raw.get("event")
        if not isinstance(event, str) or not event:
            raise ConfigError(f"{where}: dispatch_event needs an event name")
        options = raw.get("eventOptions", raw.get("options")) or {}
        if not isinstance(options, dict):
            raise ConfigError(f"{where}: eventOptions must be an object")
        return DispatchEvent(event=event, options=dict(options), **common)

    return cls(**common)


def parse_selector(raw: Any, where: str = "selector") -> Selector:
    if isinstance(raw, str):
        raw = {"path": raw}
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: selector must be an object or a path string")

    paths = _paths(raw.get("path"), where)
    actions_raw = raw.get("actions") or []
    if not isinstance(actions_raw, list):
        raise ConfigError(f"{where}: actions must be a list")
    actions = tuple(parse_action(a, f"{where}.actions[{i}]") for i, a in enumerate(actions_raw))
    if not paths and not actions:
        raise ConfigError(f"{where}: selector needs a path or actions")

    values = raw.get("values") or {}
    if not isinstance(values, dict):
        raise ConfigError(f"{where}: values must be an object")

    method = raw.get("method")
    if method is not None and method not in FILL_METHODS:
        raise ConfigError(f"{where}: unknown fill method {method!r}")

    return Selector(
        paths=paths,
        actions=actions,
        values={str(k): v for k, v in values.items()},
        method=method,
    )


def parse_platform(platform_id: str, raw: Any) -> PlatformConfig:
    """Validate one platform entry and build its PlatformConfig."""
    where = f"platform {platform_id!r}"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: must be an object")

    urls = raw.get("urls")
    if not isinstance(urls, list) or not urls or not all(isinstance(u, str) and u for u in urls):
        raise ConfigError(f"{where}: urls must be a non-empty list of glob patterns")

    default_method = raw.get("defaultMethod", raw.get("default_method", "react"))
    if default_method not in FILL_METHODS:
        raise ConfigError(f"{where}: unknown default method {default_method!r}")

    fields_raw = raw.get("inputSelectors", raw.get("fields", []))
    if not isinstance(fields_raw, list):
        raise ConfigError(f"{where}: inputSelectors must be a list")

    fields = []
    for i, entry in enumerate(fields_raw):
        if not (isinstance(entry, list) and len(entry) == 2 and isinstance(entry[0], str)):
            raise ConfigError(f"{where}.inputSelectors[{i}]: expected [fieldName, selectors]")
        name, selectors_raw = entry
        if isinstance(selectors_raw, (dict, str)):
            selectors_raw = [selectors_raw]
        if not isinstance(selectors_raw, list) or not selectors_raw:
            raise ConfigError(f"{where}.{name}: needs at least one selector")
        selectors = tuple(
            parse_selector(s, f"{where}.{name}[{j}]") for j, s in enumerate(selectors_raw)
        )
        fields.append((name, selectors))

    return PlatformConfig(
        id=platform_id,
        urls=tuple(urls),
        default_method=default_method,
        fields=tuple(fields),
        container_path=_paths(raw.get("containerPath"), where),
    )


def parse_platforms(document: Any) -> "OrderedDict[str, PlatformConfig]":
    """Build every platform of a config document, keeping file order."""
    if not isinstance(document, dict) or not isinstance(document.get("platforms"), dict):
        raise ConfigError('config document must have a "platforms" object')
    return OrderedDict(
        (pid, parse_platform(pid, raw)) for pid, raw in document["platforms"].items()
    )


def load_platforms(path: Optional[Path] = None) -> "OrderedDict[str, PlatformConfig]":
    """
    Load platform configs from a JSON file.

    Raises:
        ConfigError: file is missing, unreadable or structurally invalid
    """
    path = Path(path or PLATFORM_CONFIGS_PATH)
    try:
        with path.open("r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read platform configs from {path}: {e}") from e

    platforms = parse_platforms(document)
    logger.info(f"[Platforms] Loaded {len(platforms)} platform configs from {path.name}")
    return platforms


# Singleton instance
_platforms: Optional["OrderedDict[str, PlatformConfig]"] = None


def get_platforms() -> "OrderedDict[str, PlatformConfig]":
    """Get the bundled platform configs (loaded once)."""
    global _platforms
    if _platforms is None:
        _platforms = load_platforms()
    return _platforms
