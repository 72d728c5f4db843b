"""
ATS Engine - runs a platform config against the live page.

For each canonical field of the config (in order) the engine looks up the
profile value, then tries the field's selectors one after another until one
succeeds. A selector either names an element to fill with the default value
assignment, or runs a sequence of actions (click, set value, fire an event,
wait for an element to appear or disappear).

Failures are local: a failing step aborts its selector, a field whose
selectors all fail is left unfilled, and the run always returns counts.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from .dom import DomNode, KEYBOARD_EVENTS, assign_value
from .errors import ActionTimeout, AutofillError, ElementNotFound, RunCancelled
from .models import as_text
from .platforms import (
    Action,
    Click,
    DispatchEvent,
    PlatformConfig,
    Selector,
    SetValue,
    WaitForAppearance,
    WaitForRemoval,
    CONTEXT_PLACEHOLDER,
    LOWER_VALUE_PLACEHOLDER,
    UPPER_VALUE_PLACEHOLDER,
    VALUE_PLACEHOLDER,
)
from .profile import is_empty
from .session import RunContext

logger = logging.getLogger(__name__)

STATUS_CONFIG = "config"
STATUS_PARTIAL = "partial"


@dataclass
class InterpreterResult:
    """Counts and per-field outcome of one config run."""
    platform: str
    filled_count: int = 0
    total_count: int = 0
    filled_fields: List[str] = field(default_factory=list)
    unresolved_fields: List[str] = field(default_factory=list)
    missing_values: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ratio(self) -> float:
        if not self.total_count:
            return 0.0
        return self.filled_count / self.total_count

    def sufficed(self, threshold: float) -> bool:
        return self.total_count > 0 and self.ratio >= threshold

    def status(self, threshold: float) -> str:
        return STATUS_CONFIG if self.sufficed(threshold) else STATUS_PARTIAL

    def to_dict(self) -> dict:
        return {
            "platform": self.platform,
            "filled_count": self.filled_count,
            "total_count": self.total_count,
            "filled_fields": list(self.filled_fields),
            "unresolved_fields": list(self.unresolved_fields),
            "missing_values": list(self.missing_values),
            "cancelled": self.cancelled,
        }


def substitute(path: str, value: Any) -> str:
    """Replace path placeholders. The context marker becomes '.' (relative to the context element)."""
    text = as_text(value)
    return (
        path.replace(CONTEXT_PLACEHOLDER, ".")
        .replace(UPPER_VALUE_PLACEHOLDER, text.upper())
        .replace(LOWER_VALUE_PLACEHOLDER, text.lower())
        .replace(VALUE_PLACEHOLDER, text)
    )


class ATSEngine:
    """Interpreter for platform configs."""

    def __init__(self, ctx: RunContext):
        self.ctx = ctx
        self.document = ctx.document

    def run(self, config: PlatformConfig) -> InterpreterResult:
        """
        Fill every field of the config that the profile has a value for.

        Never raises for fill failures; a cancelled run returns the counts so far.
        """
        result = InterpreterResult(platform=config.id)
        profile = self.ctx.profile
        logger.info(f"[ATS Engine] Starting fill for: {config.id} (default method: {config.default_method})")

        try:
            scope = self._find_container(config)
            for field_name, selectors in config.fields:
                self.ctx.check()
                result.total_count += 1

                value = profile.value(field_name)
                if is_empty(value):
                    logger.debug(f"[ATS Engine] No profile value for {field_name}")
                    result.missing_values.append(field_name)
                    continue

                if self.fill_field(field_name, selectors, value, config.default_method, scope):
                    result.filled_count += 1
                    result.filled_fields.append(field_name)
                    logger.info(f"[ATS Engine] ✅ Filled {field_name}")
                else:
                    result.unresolved_fields.append(field_name)
                    logger.warning(f"[ATS Engine] ❌ Failed to fill {field_name}")
        except RunCancelled:
            result.cancelled = True
            logger.info(f"[ATS Engine] Run cancelled after {result.filled_count} fields")

        logger.info(f"[ATS Engine] Filled {result.filled_count}/{result.total_count} fields")
        return result

    def _find_container(self, config: PlatformConfig) -> Optional[DomNode]:
        if not config.container_path:
            return None
        container = self._resolve(config.container_path, None)
        if container is None:
            logger.debug(f"[ATS Engine] Container not found for {config.id}, using document")
        return container

    def fill_field(self, field_name: str, selectors, value: Any,
                   default_method: str = "react", scope: Optional[DomNode] = None) -> bool:
        """Try selectors in order; the first that succeeds fills the field."""
        for index, selector in enumerate(selectors):
            self.ctx.check()
            try:
                if self._apply_selector(selector, value, default_method, scope):
                    return True
            except RunCancelled:
                raise
            except AutofillError as e:
                logger.debug(f"[ATS Engine] {field_name}: selector {index} failed: {e}")
        return False

    def _apply_selector(self, selector: Selector, value: Any,
                        default_method: str, scope: Optional[DomNode]) -> bool:
        fill_value = selector.translate(value)
        method = selector.method or default_method

        element = None
        if selector.paths:
            element = self._resolve(tuple(substitute(p, fill_value) for p in selector.paths), scope)
            if element is None:
                raise ElementNotFound(f"No element for {selector.paths[0]}")

        if selector.actions:
            self._run_actions(selector.actions, element, fill_value, method)
            return True

        assign_value(element, fill_value, method)
        return True

    def _run_actions(self, actions, element: Optional[DomNode], value: Any, method: str):
        """Run steps in order. The element each step resolves is the context of the next."""
        current = element
        for action in actions:
            if action.delay:
                self.ctx.sleep(action.delay)
            try:
                target = self._target_for(action, current, value)
                self._perform(action, target, current, value, method)
            except RunCancelled:
                raise
            except AutofillError as e:
                if action.allow_failure:
                    logger.debug(f"[ATS Engine] Step {action.kind} failed (allowed): {e}")
                    continue
                raise
            if target is not None:
                current = target

    def _target_for(self, action: Action, current: Optional[DomNode], value: Any) -> Optional[DomNode]:
        """Resolve the element a step works on."""
        if not action.needs_target:
            return None
        if not action.path:
            if current is None:
                return self.document.root()
            return current

        context = current if action.is_relative else None
        if action.is_relative and current is None:
            raise ElementNotFound(f"{action.kind}: relative path without a context element")
        paths = tuple(substitute(p, value) for p in action.path)

        if action.timeout > 0:
            found = self.ctx.poll(lambda: self._resolve(paths, context), action.timeout)
            if found is None:
                raise ActionTimeout(f"{action.kind}: {paths[0]} did not appear within {action.timeout}s")
            return found

        found = self._resolve(paths, context)
        if found is None:
            raise ElementNotFound(f"{action.kind}: no element for {paths[0]}")
        return found

    def _perform(self, action: Action, target: Optional[DomNode], current: Optional[DomNode],
                 value: Any, method: str):
        if isinstance(action, Click):
            target.click()
        elif isinstance(action, SetValue):
            assign_value(target, value, action.method or method)
        elif isinstance(action, DispatchEvent):
            target.dispatch(action.event, action.options, keyboard=action.event in KEYBOARD_EVENTS)
        elif isinstance(action, WaitForAppearance):
            pass  # resolving the target already waited for it
        elif isinstance(action, WaitForRemoval):
            context = current if action.is_relative else None
            paths = tuple(substitute(p, value) for p in action.path)
            gone = self.ctx.poll(lambda: self._resolve(paths, context) is None, action.timeout)
            if not gone:
                raise ActionTimeout(f"{action.kind}: {paths[0]} still present after {action.timeout}s")
        else:
            raise TypeError(f"Unhandled action type: {type(action).__name__}")

    def _resolve(self, paths, context: Optional[DomNode]) -> Optional[DomNode]:
        """First path that resolves to an element wins."""
        for path in paths:
            found = self.document.find(path, context)
            if found is not None:
                return found
        return None
