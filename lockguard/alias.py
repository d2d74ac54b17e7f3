"""
Approximate lock aliasing.

Lock identity descriptors are grouped into alias classes:

* static locks are one class per allocation site;
* field locks are one class per (receiver type, field path), so the same
  field reached through different receivers lands in the same class;
* heap-indirect locks are one class per lock type.

Two descriptors in one class compare at tier ``EXACT`` when they are the
same static site, or the same field path through the same receiver local
within one activation of one function. Receiver locals are function scoped,
so the same field path seen anywhere else is only ``LIKELY``. A heap-indirect
lock is always ``UNKNOWN``.
"""

from enum import Enum
from typing import Optional, Tuple

from lockguard.program_model import LockId, LockSite


class AliasTier(Enum):
    EXACT = "exact"
    LIKELY = "likely"
    UNKNOWN = "unknown"


ClassKey = Tuple[str, ...]


def class_key(lock: LockId) -> ClassKey:
    """Key of the alias class ``lock`` belongs to"""
    if lock.site is LockSite.STATIC:
        return ("static", lock.name)
    if lock.site is LockSite.FIELD:
        return ("field", lock.receiver_type or "", lock.name)
    return ("heap", lock.lock_type)


def class_label(key: ClassKey) -> str:
    """Readable name of an alias class"""
    kind, *rest = key
    if kind == "field":
        receiver_type, path = rest
        return f"{receiver_type or '_'}.{path}"
    if kind == "heap":
        return f"<heap {rest[0] or '?'}>"
    return rest[0]


def alias_tier(
    first: LockId, second: LockId, same_frame: bool = False
) -> Optional[AliasTier]:
    """
    Tier at which two descriptors may denote the same lock

    Args:
        first: Descriptor of the earlier acquisition
        second: Descriptor of the later acquisition
        same_frame: Both acquisitions run in the same activation of the same
            function, so equal receiver locals hold the same value

    Returns:
        The tier, or None when the descriptors are in different alias classes
    """
    if class_key(first) != class_key(second):
        return None
    if first.site is LockSite.HEAP:
        return AliasTier.UNKNOWN
    if first.site is LockSite.STATIC:
        return AliasTier.EXACT
    if same_frame and first.receiver is not None and first.receiver == second.receiver:
        return AliasTier.EXACT
    return AliasTier.LIKELY
