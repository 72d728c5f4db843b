"""
Page signatures: cache keys derived from a form's structure.

The signature hashes the sorted field fingerprints, so it does not change
when fields are reordered or when their values change.
"""

import hashlib
from collections import Counter
from typing import Dict, Iterable, List

from .models import FormFieldDescriptor

SIGNATURE_PREFIX = "form_"


def page_signature(descriptors: Iterable[FormFieldDescriptor]) -> str:
    fingerprints = sorted(d.fingerprint() for d in descriptors)
    digest = hashlib.sha256("|".join(fingerprints).encode("utf-8")).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest[:32]}"


def field_keys(descriptors: List[FormFieldDescriptor]) -> Dict[str, str]:
    """
    Map field_id -> structural key (fingerprint, '#n' suffix for repeats).

    Keys identify a field inside a cached mapping without relying on
    positional ids, which shift when the page adds or removes fields.
    """
    seen: Counter = Counter()
    keys = {}
    for descriptor in descriptors:
        fingerprint = descriptor.fingerprint()
        count = seen[fingerprint]
        seen[fingerprint] += 1
        keys[descriptor.field_id] = fingerprint if count == 0 else f"{fingerprint}#{count}"
    return keys
