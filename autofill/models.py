"""
Data model shared by the autofill engine.

FormFieldDescriptor - one fillable field (or one radio group) on the page
FillDecision        - what to put into a field, with a confidence score
FillReport          - outcome of one orchestrated run
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

# Element kinds a descriptor can have
ELEMENT_KINDS = ("text", "select", "textarea", "radio", "checkbox")
ENUMERABLE_KINDS = ("select", "radio")

# Decision actions
ACTION_FILL = "fill"
ACTION_SELECT = "select"
ACTION_CHECK = "check"
ACTION_SKIP = "skip"
FILL_ACTIONS = (ACTION_FILL, ACTION_SELECT, ACTION_CHECK, ACTION_SKIP)

# Report methods
METHOD_CONFIG = "config"
METHOD_AI = "ai"
METHOD_HEURISTIC = "heuristic"
METHOD_HYBRID = "hybrid"

TRUE_STRINGS = {"true", "yes", "y", "1", "on", "checked"}
FALSE_STRINGS = {"false", "no", "n", "0", "off", "", "unchecked"}


@dataclass
class FieldOption:
    """One choice of a select element or radio group."""
    value: str = ""
    text: str = ""
    selected: bool = False

    @classmethod
    def coerce(cls, raw: Any) -> "FieldOption":
        """Build an option from an option dict, a plain string, or an option."""
        if isinstance(raw, FieldOption):
            return raw
        if isinstance(raw, dict):
            value = raw.get("value")
            text = raw.get("text")
            value = "" if value is None else str(value)
            text = value if text is None else str(text)
            return cls(value=value, text=text, selected=bool(raw.get("selected", False)))
        return cls(value=str(raw), text=str(raw))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FormFieldDescriptor:
    """Snapshot of a fillable field, rebuilt on every run."""

    field_id: str
    element_type: str = "text"      # text, select, textarea, radio, checkbox
    input_type: str = ""            # text, email, tel, number, ...
    name: str = ""
    id: str = ""
    label: str = ""
    placeholder: str = ""
    aria_label: str = ""
    required: bool = False
    options: List[FieldOption] = field(default_factory=list)
    group_name: str = ""
    current_value: str = ""

    # Context clues
    surrounding_text: str = ""
    section_title: str = ""

    def __post_init__(self):
        if self.element_type == "input":
            self.element_type = "text"
        if self.element_type not in ELEMENT_KINDS:
            raise ValueError(f"Unknown element type: {self.element_type}")
        self.options = [FieldOption.coerce(o) for o in self.options]

    @property
    def is_enumerable(self) -> bool:
        return self.element_type in ENUMERABLE_KINDS

    def search_text(self, include_context: bool = True) -> str:
        """Lower-cased text used to classify the field."""
        parts = [self.name, self.id, self.placeholder, self.label, self.aria_label]
        if include_context:
            parts += [self.surrounding_text, self.section_title]
        return " ".join(p for p in parts if p).lower()

    def fingerprint(self) -> str:
        """Structural identity of the field, independent of its value and position."""
        return f"{self.element_type}:{self.input_type}:{self.name}:{self.label[:20]}".lower()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["options"] = [o.to_dict() for o in self.options]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormFieldDescriptor":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known["field_id"] = str(data.get("field_id") or data.get("id") or "")
        if not known["field_id"]:
            raise ValueError("Field descriptor needs a field_id")
        return cls(**known)


@dataclass
class FillDecision:
    """What to write into one field."""

    field_id: str
    action: str = ACTION_FILL
    value: Any = ""
    confidence: float = 0.0
    reasoning: str = ""
    source_field: Optional[str] = None   # canonical profile attribute, when known

    def __post_init__(self):
        if self.action not in FILL_ACTIONS:
            raise ValueError(f"Unknown fill action: {self.action}")
        self.confidence = min(1.0, max(0.0, float(self.confidence)))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FillDecision":
        return cls(
            field_id=str(data["field_id"]),
            action=data.get("action", ACTION_FILL),
            value=data.get("value", ""),
            confidence=data.get("confidence", 0.0),
            reasoning=data.get("reasoning", "") or "",
            source_field=data.get("source_field"),
        )


@dataclass
class FillReport:
    """Outcome of one autofill run."""

    url: str = ""
    method: Optional[str] = None
    platform: Optional[str] = None
    filled_count: int = 0
    total_count: int = 0
    decisions: List[FillDecision] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    page_signature: Optional[str] = None
    cached: bool = False
    cancelled: bool = False
    busy: bool = False

    @property
    def ratio(self) -> float:
        if not self.total_count:
            return 0.0
        return self.filled_count / self.total_count

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["ratio"] = round(self.ratio, 3)
        return data


def as_text(value: Any) -> str:
    """Render a profile or decision value as text for a text-like field."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ", ".join(as_text(v) for v in value if v not in (None, ""))
    return str(value)


def as_bool(value: Any) -> Optional[bool]:
    """Interpret a value as a checkbox state. None when it cannot be read as one."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
    return None


def coerce_decision(decision: FillDecision, descriptor: FormFieldDescriptor) -> Optional[FillDecision]:
    """
    Make the decision's value type agree with the field's element kind.

    Returns None when the value cannot be expressed for that kind.
    """
    if decision.action == ACTION_SKIP:
        return decision

    kind = descriptor.element_type
    if kind == "checkbox":
        state = as_bool(decision.value)
        if state is None:
            return None
        decision.action = ACTION_CHECK
        decision.value = state
    elif kind in ENUMERABLE_KINDS:
        text = as_text(decision.value)
        if not text:
            return None
        decision.action = ACTION_SELECT
        decision.value = text
    else:
        text = as_text(decision.value)
        if not text:
            return None
        decision.action = ACTION_FILL
        decision.value = text
    return decision
