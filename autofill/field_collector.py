"""
Collect fillable fields from a page.

Walks the document through DomNode (children, shadow roots, iframe
documents) so the same code runs against Playwright and against an
in-memory tree. Radio buttons sharing a name become one descriptor, and
so do the role="radio" items of a role="radiogroup". Other ARIA controls
(role checkbox and listbox) are collected like their native counterparts.

Only the step on screen is collected; multi-step forms are filled one
step at a time and never advanced or submitted.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional

from .dom import ARIA_RADIO_GROUP, DomNode, SKIPPED_INPUT_TYPES, aria_descendants, aria_option
from .models import FieldOption, FormFieldDescriptor

logger = logging.getLogger(__name__)

FILLABLE_TAGS = ("input", "select", "textarea")


@dataclass
class FieldHandle:
    """A descriptor plus the live element(s) behind it (one per radio option)."""
    descriptor: FormFieldDescriptor
    nodes: List[DomNode] = field(default_factory=list)

    @property
    def field_id(self) -> str:
        return self.descriptor.field_id

    def node_for(self, value) -> Optional[DomNode]:
        """Element to write value into. For radio groups, the option whose value or label matches."""
        if self.descriptor.element_type != "radio" or len(self.nodes) == 1:
            return self.nodes[0]
        text = str(value).strip().lower()
        for option, node in zip(self.descriptor.options, self.nodes):
            if option.value.lower() == text or option.text.lower() == text:
                return node
        return None


def iter_nodes(node: DomNode, prune: Optional[Callable[[DomNode], bool]] = None) -> Iterator[DomNode]:
    """
    Yield node and everything below it in document order, entering shadow roots and iframes.

    Nodes for which prune returns True are yielded but not descended into.
    """
    yield node
    if prune is not None and prune(node):
        return
    shadow = node.shadow_root()
    if shadow is not None:
        yield from iter_nodes(shadow, prune)
    frame = node.frame_root()
    if frame is not None:
        yield from iter_nodes(frame, prune)
    for child in node.children():
        yield from iter_nodes(child, prune)


def _is_composite(node: DomNode) -> bool:
    """ARIA controls whose parts are read through the control itself."""
    return node.tag() not in FILLABLE_TAGS and node.role() in (ARIA_RADIO_GROUP, "listbox")


def _is_candidate(node: DomNode) -> bool:
    if node.is_aria_widget():
        return node.is_fillable()
    if node.tag() not in FILLABLE_TAGS:
        return False
    if node.input_type() in SKIPPED_INPUT_TYPES:
        return False
    return node.is_fillable()


def describe(node: DomNode, field_id: str) -> FormFieldDescriptor:
    """Build the descriptor of a single element."""
    kind = node.kind()
    surrounding, section = node.context_text()
    label = node.label_text()

    options: List[FieldOption] = []
    current_value = ""
    if kind == "select":
        options = [o for o in node.options() if o.value]
        if node.is_aria_widget():
            current_value = next((o.value for o in options if o.selected), "")
        else:
            current_value = node.value()
    elif kind == "radio":
        if node.is_aria_widget():
            options = [aria_option(node)]
        else:
            options = [FieldOption(value=node.attribute("value") or "on", text=label, selected=node.is_checked())]
        current_value = options[0].value if node.is_checked() else ""
        label = section or surrounding or label
    elif kind == "checkbox":
        current_value = "true" if node.is_checked() else ""
    else:
        current_value = node.value()

    return FormFieldDescriptor(
        field_id=field_id,
        element_type=kind,
        input_type=node.input_type(),
        name=node.attribute("name") or "",
        id=node.attribute("id") or "",
        label=label,
        placeholder=node.attribute("placeholder") or "",
        aria_label=node.attribute("aria-label") or "",
        required=node.attribute("required") is not None or node.attribute("aria-required") == "true",
        options=options,
        group_name=(node.attribute("name") or "") if kind == "radio" else "",
        current_value=current_value,
        surrounding_text=surrounding,
        section_title=section,
    )


def describe_radio_group(group: DomNode, field_id: str) -> Optional[FieldHandle]:
    """One radio descriptor for a role="radiogroup", backed by its role="radio" items."""
    if not group.is_fillable():
        return None
    radios = [r for r in aria_descendants(group, "radio") if r.is_fillable()]
    if not radios:
        return None
    options = [aria_option(r) for r in radios]
    surrounding, section = group.context_text()

    descriptor = FormFieldDescriptor(
        field_id=field_id,
        element_type="radio",
        id=group.attribute("id") or "",
        label=group.label_text() or section or surrounding,
        aria_label=group.attribute("aria-label") or "",
        required=group.attribute("aria-required") == "true",
        options=options,
        group_name=group.attribute("id") or group.attribute("aria-labelledby") or "",
        current_value=next((o.value for o in options if o.selected), ""),
        surrounding_text=surrounding,
        section_title=section,
    )
    return FieldHandle(descriptor=descriptor, nodes=radios)


def collect_fields(root: DomNode) -> List[FieldHandle]:
    """All fillable fields under root, as descriptors with ids field_0, field_1, ..."""
    handles: List[FieldHandle] = []
    radio_groups: Dict[str, FieldHandle] = {}

    for node in iter_nodes(root, prune=_is_composite):
        if node.tag() not in FILLABLE_TAGS and node.role() == ARIA_RADIO_GROUP:
            handle = describe_radio_group(node, f"field_{len(handles)}")
            if handle is not None:
                handles.append(handle)
            continue
        if not _is_candidate(node):
            continue

        if node.kind() == "radio":
            group = node.attribute("name") or ""
            if group and group in radio_groups:
                handle = radio_groups[group]
                option = FieldOption(
                    value=node.attribute("value") or "on",
                    text=node.label_text(),
                    selected=node.is_checked(),
                )
                handle.descriptor.options.append(option)
                if option.selected:
                    handle.descriptor.current_value = option.value
                handle.nodes.append(node)
                continue

        handle = FieldHandle(descriptor=describe(node, f"field_{len(handles)}"), nodes=[node])
        handles.append(handle)
        if handle.descriptor.element_type == "radio" and handle.descriptor.group_name:
            radio_groups[handle.descriptor.group_name] = handle

    logger.info(f"[Collector] Found {len(handles)} fillable fields")
    return handles
