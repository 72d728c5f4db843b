"""
DOM surface used by the engine.

DomNode / Document describe the few operations the engine needs from a
page: walking children, shadow roots and iframes, resolving element paths,
reading options and labels, and writing values in a way reactive UI
libraries notice. PlaywrightNode / PlaywrightDocument implement them on
top of Playwright's sync API; tests use an in-memory tree.
"""

import functools
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from playwright.sync_api import Error as PlaywrightError, Page, ElementHandle

from .errors import ElementNotFound, ValueAssignmentError
from .matcher import match_option
from .models import FieldOption, as_bool, as_text

logger = logging.getLogger(__name__)

TEXT_EVENTS = ("input", "change", "blur")
KEYBOARD_EVENTS = ("keydown", "keyup", "keypress")
SKIPPED_INPUT_TYPES = ("hidden", "submit", "button", "image", "reset", "file")
NATIVE_FIELD_TAGS = ("input", "select", "textarea")

# Custom controls exposed through ARIA roles (Google Forms, Typeform, ...)
ARIA_WIDGET_ROLES = ("radio", "checkbox", "listbox")
ARIA_RADIO_GROUP = "radiogroup"


class DomNode:
    """An element (or shadow root / frame document) of the page."""

    def tag(self) -> str:
        raise NotImplementedError

    def attribute(self, name: str) -> Optional[str]:
        raise NotImplementedError

    def role(self) -> str:
        return (self.attribute("role") or "").lower()

    def is_aria_widget(self) -> bool:
        """A non-native control that is driven by clicks (role radio, checkbox or listbox)."""
        return self.tag() not in NATIVE_FIELD_TAGS and self.role() in ARIA_WIDGET_ROLES

    def kind(self) -> str:
        """Element kind as used by descriptors: text, select, textarea, radio, checkbox."""
        tag = self.tag()
        if tag in ("select", "textarea"):
            return tag
        if tag != "input":
            role = self.role()
            if role in ("radio", "checkbox"):
                return role
            if role == "listbox":
                return "select"
            if role == ARIA_RADIO_GROUP:
                return "radio"
        input_type = (self.attribute("type") or "text").lower()
        if input_type in ("radio", "checkbox"):
            return input_type
        return "text"

    def input_type(self) -> str:
        if self.tag() != "input":
            return ""
        return (self.attribute("type") or "text").lower()

    def children(self) -> List["DomNode"]:
        raise NotImplementedError

    def shadow_root(self) -> Optional["DomNode"]:
        return None

    def frame_root(self) -> Optional["DomNode"]:
        return None

    def find(self, path: str) -> Optional["DomNode"]:
        """Resolve a path relative to this node."""
        raise NotImplementedError

    def options(self) -> List[FieldOption]:
        if self.role() == "listbox":
            return [aria_option(n) for n in aria_descendants(self, "option")]
        return []

    def label_text(self) -> str:
        return ""

    def inner_text(self) -> str:
        return ""

    def context_text(self) -> Tuple[str, str]:
        """(surrounding text, section title)"""
        return "", ""

    def value(self) -> str:
        return ""

    def is_checked(self) -> bool:
        return False

    def is_fillable(self) -> bool:
        return True

    def click(self):
        raise NotImplementedError

    def set_native_value(self, value: str):
        """Write through the element prototype's value setter."""
        raise NotImplementedError

    def set_property(self, name: str, value: Any):
        raise NotImplementedError

    def dispatch(self, event: str, options: Optional[Dict[str, Any]] = None, keyboard: bool = False):
        raise NotImplementedError


class Document:
    """A page the engine runs against."""

    url: str = ""

    @property
    def key(self) -> int:
        """Identity used by the run-in-progress guard."""
        return id(self)

    def root(self) -> DomNode:
        raise NotImplementedError

    def find(self, path: str, context: Optional[DomNode] = None) -> Optional[DomNode]:
        """Resolve a path from the document, or from context when given."""
        raise NotImplementedError

    def on_teardown(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback for when the page navigates away or closes.

        Returns a function that unregisters it.
        """
        return lambda: None

    def pause(self, seconds: float, cancelled: threading.Event) -> bool:
        """Wait up to seconds. Returns True when the run was cancelled meanwhile."""
        return cancelled.wait(seconds)


# ============ ARIA controls ============

def aria_descendants(node: DomNode, role: str) -> List[DomNode]:
    """Descendants with the given role, not looking inside matches."""
    found = []
    for child in node.children():
        if child.role() == role:
            found.append(child)
        else:
            found.extend(aria_descendants(child, role))
    return found


def aria_option(node: DomNode) -> FieldOption:
    """Option of an ARIA radio or listbox. data-value wins, an empty one marks a placeholder."""
    text = (node.attribute("aria-label") or node.inner_text()).strip()
    value = node.attribute("data-value")
    selected = node.is_checked() or node.attribute("aria-selected") == "true"
    return FieldOption(value=text if value is None else value, text=text, selected=selected)


def _assign_aria(node: DomNode, kind: str, value: Any) -> str:
    """Drive a custom control the way a user would: by clicking it."""
    if kind == "checkbox":
        state = as_bool(value)
        if state is None:
            raise ValueAssignmentError(f"Cannot use {value!r} as a checkbox state")
        if node.is_checked() != state:
            node.click()
        return "true" if state else "false"

    if kind == "radio":
        if not node.is_checked():
            node.click()
        return aria_option(node).value

    option_nodes = aria_descendants(node, "option")
    options = [aria_option(n) for n in option_nodes]
    match = match_option(value, [o for o in options if o.value])
    if match is None:
        raise ValueAssignmentError(f"No option matching {value!r}")
    node.click()
    option_nodes[options.index(match)].click()
    return match.value


# ============ Value assignment ============

def assign_value(node: DomNode, value: Any, method: str = "react") -> str:
    """
    Write a value so that framework change detection sees it.

    text/textarea: native prototype setter, then input/change/blur
    checkbox:      checked = truthy(value), then change
    radio:         checked = true, then change
    select:        fuzzy-matched option value (raw value if nothing matches), then change
    ARIA controls: clicked (listboxes are opened, then the matching option clicked)

    Returns the value actually written (text form).

    Raises:
        ValueAssignmentError: the element rejected the write
    """
    kind = node.kind()
    if node.is_aria_widget():
        return _assign_aria(node, kind, value)

    if kind == "checkbox":
        state = as_bool(value)
        if state is None:
            raise ValueAssignmentError(f"Cannot use {value!r} as a checkbox state")
        node.set_property("checked", state)
        node.dispatch("change")
        return "true" if state else "false"

    if kind == "radio":
        node.set_property("checked", True)
        node.dispatch("change")
        return node.attribute("value") or "on"

    if kind == "select":
        match = match_option(value, node.options())
        selected = match.value if match else as_text(value)
        node.set_property("value", selected)
        node.dispatch("change")
        return selected

    text = as_text(value)
    if method == "plain":
        node.set_property("value", text)
    else:
        node.set_native_value(text)
    for event in TEXT_EVENTS:
        node.dispatch(event)
    return text


# ============ Playwright adapter ============

def _translate_errors(fn):
    """Turn Playwright errors into engine errors."""
    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except PlaywrightError as e:
            raise ValueAssignmentError(f"{fn.__name__} failed: {e}") from e
    return wrapper


NATIVE_SETTER_JS = """
(el, value) => {
    const proto = el instanceof HTMLTextAreaElement ? HTMLTextAreaElement.prototype
        : el instanceof HTMLSelectElement ? HTMLSelectElement.prototype
        : HTMLInputElement.prototype;
    const descriptor = Object.getOwnPropertyDescriptor(proto, 'value');
    el.focus();
    if (descriptor && descriptor.set) {
        descriptor.set.call(el, value);
    } else {
        el.value = value;
    }
}
"""

DISPATCH_JS = """
(el, [name, options, keyboard]) => {
    const init = Object.assign({bubbles: true, cancelable: true}, options || {});
    const event = keyboard ? new KeyboardEvent(name, init) : new Event(name, init);
    el.dispatchEvent(event);
}
"""

OPTIONS_JS = """
el => {
    if (el.options) {
        return Array.from(el.options).map(o => ({
            value: o.value,
            text: (o.text || '').trim(),
            selected: o.selected,
        }));
    }
    const clean = t => (t || '').replace(/\s+/g, ' ').trim();
    return Array.from(el.querySelectorAll('[role="option"]')).map(o => {
        const text = clean(o.getAttribute('aria-label') || o.innerText);
        return {
            value: o.hasAttribute('data-value') ? o.getAttribute('data-value') : text,
            text: text,
            selected: o.getAttribute('aria-selected') === 'true',
        };
    });
}
"""

FILLABLE_JS = """
el => {
    if (el.disabled || el.readOnly) return false;
    if (el.getAttribute('aria-disabled') === 'true') return false;
    const type = (el.getAttribute('type') || '').toLowerCase();
    if (type === 'radio' || type === 'checkbox') return true;
    const style = window.getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden') return false;
    return el.offsetParent !== null || style.position === 'fixed';
}
"""

LABEL_JS = """
el => {
    const clean = t => (t || '').replace(/\\s+/g, ' ').trim();
    if (el.id) {
        const forLabel = el.getRootNode().querySelector(`label[for="${CSS.escape(el.id)}"]`);
        if (forLabel && clean(forLabel.innerText)) return clean(forLabel.innerText);
    }
    const wrapping = el.closest('label');
    if (wrapping && clean(wrapping.innerText)) return clean(wrapping.innerText);
    const aria = el.getAttribute('aria-label');
    if (aria) return clean(aria);
    const labelledBy = el.getAttribute('aria-labelledby');
    if (labelledBy) {
        const text = labelledBy.split(/\\s+/)
            .map(id => el.getRootNode().getElementById(id))
            .filter(Boolean).map(n => n.innerText).join(' ');
        if (clean(text)) return clean(text);
    }
    if (el.placeholder) return clean(el.placeholder);
    let prev = el.previousElementSibling;
    while (prev) {
        const text = clean(prev.innerText);
        if (text && text.length < 120) return text;
        prev = prev.previousElementSibling;
    }
    const cell = el.closest('td');
    if (cell && cell.previousElementSibling) return clean(cell.previousElementSibling.innerText);
    const parent = el.parentElement;
    if (parent) {
        const text = clean(parent.innerText);
        if (text && text.length < 120) return text;
    }
    return '';
}
"""

CONTEXT_JS = """
el => {
    const clean = t => (t || '').replace(/\\s+/g, ' ').trim();
    let surrounding = '';
    const container = el.closest('[role="listitem"], .field, .form-group, .question, [class*="question"], [class*="field"]')
        || el.parentElement;
    if (container) surrounding = clean(container.innerText).slice(0, 200);
    let section = '';
    const fieldset = el.closest('fieldset');
    if (fieldset) {
        const legend = fieldset.querySelector('legend');
        if (legend) section = clean(legend.innerText);
    }
    if (!section) {
        const group = el.closest('section, [role="group"], [class*="section"]');
        const heading = group && group.querySelector('h1, h2, h3, h4, h5, h6');
        if (heading) section = clean(heading.innerText);
    }
    return [surrounding, section];
}
"""


class PlaywrightNode(DomNode):
    """DomNode backed by a Playwright ElementHandle."""

    def __init__(self, handle: ElementHandle):
        self.handle = handle
        self._tag: Optional[str] = None

    def __eq__(self, other):
        return isinstance(other, PlaywrightNode) and self.handle == other.handle

    def __hash__(self):
        return id(self.handle)

    @_translate_errors
    def tag(self) -> str:
        if self._tag is None:
            self._tag = self.handle.evaluate("el => (el.tagName || '#fragment').toLowerCase()")
        return self._tag

    @_translate_errors
    def attribute(self, name: str) -> Optional[str]:
        return self.handle.evaluate("(el, name) => el.getAttribute ? el.getAttribute(name) : null", name)

    @_translate_errors
    def children(self) -> List[DomNode]:
        array = self.handle.evaluate_handle("el => Array.from(el.children || [])")
        nodes = []
        for prop in array.get_properties().values():
            element = prop.as_element()
            if element:
                nodes.append(PlaywrightNode(element))
        array.dispose()
        return nodes

    @_translate_errors
    def shadow_root(self) -> Optional[DomNode]:
        handle = self.handle.evaluate_handle("el => el.shadowRoot || null")
        element = handle.as_element()
        return PlaywrightNode(element) if element else None

    @_translate_errors
    def frame_root(self) -> Optional[DomNode]:
        if self.tag() != "iframe":
            return None
        frame = self.handle.content_frame()
        if frame is None:
            return None
        html = frame.query_selector("html")
        return PlaywrightNode(html) if html else None

    def find(self, path: str) -> Optional[DomNode]:
        try:
            handle = self.handle.query_selector(f"xpath={path}")
        except PlaywrightError as e:
            logger.debug(f"[DOM] Path failed to resolve: {path}: {e}")
            return None
        return PlaywrightNode(handle) if handle else None

    @_translate_errors
    def options(self) -> List[FieldOption]:
        return [FieldOption.coerce(o) for o in self.handle.evaluate(OPTIONS_JS)]

    @_translate_errors
    def inner_text(self) -> str:
        return self.handle.evaluate("el => (el.innerText || el.textContent || '').replace(/\\s+/g, ' ').trim()")

    @_translate_errors
    def label_text(self) -> str:
        return self.handle.evaluate(LABEL_JS) or ""

    @_translate_errors
    def context_text(self) -> Tuple[str, str]:
        surrounding, section = self.handle.evaluate(CONTEXT_JS)
        return surrounding or "", section or ""

    @_translate_errors
    def value(self) -> str:
        return self.handle.evaluate("el => el.value == null ? '' : String(el.value)")

    @_translate_errors
    def is_checked(self) -> bool:
        return bool(self.handle.evaluate("el => el.checked === true || el.getAttribute('aria-checked') === 'true'"))

    @_translate_errors
    def is_fillable(self) -> bool:
        return bool(self.handle.evaluate(FILLABLE_JS))

    @_translate_errors
    def click(self):
        self.handle.evaluate("el => el.click()")

    @_translate_errors
    def set_native_value(self, value: str):
        self.handle.evaluate(NATIVE_SETTER_JS, value)

    @_translate_errors
    def set_property(self, name: str, value: Any):
        self.handle.evaluate("(el, [name, value]) => { el[name] = value; }", [name, value])

    @_translate_errors
    def dispatch(self, event: str, options: Optional[Dict[str, Any]] = None, keyboard: bool = False):
        self.handle.evaluate(DISPATCH_JS, [event, options or {}, keyboard])


class PlaywrightDocument(Document):
    """Document backed by a Playwright Page."""

    def __init__(self, page: Page):
        self.page = page

    @property
    def url(self) -> str:
        return self.page.url

    @property
    def key(self) -> int:
        return id(self.page)

    def root(self) -> DomNode:
        try:
            html = self.page.query_selector("html")
        except PlaywrightError as e:
            raise ElementNotFound(f"Document root unavailable: {e}") from e
        if html is None:
            raise ElementNotFound("Document has no root element")
        return PlaywrightNode(html)

    def find(self, path: str, context: Optional[DomNode] = None) -> Optional[DomNode]:
        if context is not None:
            return context.find(path)
        try:
            handle = self.page.query_selector(f"xpath={path}")
        except PlaywrightError as e:
            logger.debug(f"[DOM] Path failed to resolve: {path}: {e}")
            return None
        return PlaywrightNode(handle) if handle else None

    def on_teardown(self, callback: Callable[[], None]) -> Callable[[], None]:
        def on_navigated(frame):
            if frame == self.page.main_frame:
                callback()

        def on_close(_page):
            callback()

        self.page.on("framenavigated", on_navigated)
        self.page.on("close", on_close)

        def detach():
            self.page.remove_listener("framenavigated", on_navigated)
            self.page.remove_listener("close", on_close)

        return detach

    def pause(self, seconds: float, cancelled: threading.Event) -> bool:
        # Sync Playwright only delivers page events while a call is in flight,
        # so wait through the page instead of blocking the thread.
        try:
            self.page.wait_for_timeout(seconds * 1000)
        except PlaywrightError as e:
            logger.debug(f"[DOM] Wait interrupted: {e}")
            return True
        return cancelled.is_set()
