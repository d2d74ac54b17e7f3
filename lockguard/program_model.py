"""
Program model consumed by the analysis.

The compiler adapter hands over a snapshot of monomorphized function
instances together with their control-flow bodies. Bodies are reduced to
what lock analysis needs: guard acquisitions, explicit releases, scope exits
and the block structure with call sites. A model is loaded from the JSON
document the adapter writes, or built directly from the dataclasses below.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from lockguard.errors import ProgramModelError


class GuardKind(Enum):
    """Kind of guard produced by a lock acquisition"""

    MUTEX = "mutex"  # exclusive, non-reentrant
    REENTRANT_MUTEX = "reentrant_mutex"  # exclusive, same-thread reentrant
    SPIN_MUTEX = "spin_mutex"  # exclusive, busy-waits forever on re-acquire
    READ = "read"  # shared side of a reader-writer lock
    WRITE = "write"  # exclusive side of a reader-writer lock

    @property
    def is_shared(self) -> bool:
        return self is GuardKind.READ

    @property
    def is_reentrant(self) -> bool:
        return self is GuardKind.REENTRANT_MUTEX


class LockSite(Enum):
    """How a lock is reached from the acquiring code"""

    STATIC = "static"
    FIELD = "field"
    HEAP = "heap"


@dataclass(frozen=True)
class SourceLocation:
    """Position of an operation in the analyzed sources"""

    file: str
    line: int = 0
    column: int = 0

    @classmethod
    def parse(cls, text: str) -> "SourceLocation":
        """Parse ``file:line:col`` (line and column optional)."""
        parts = text.rsplit(":", 2)
        numbers: List[int] = []
        while len(parts) > 1 and parts[-1].isdigit():
            numbers.insert(0, int(parts.pop()))
        if len(parts) > 1:
            # the file name itself contained a colon
            parts = [":".join(parts)]
        line, column = (numbers + [0, 0])[:2]
        return cls(parts[0], line, column)

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


UNKNOWN_LOCATION = SourceLocation("<unknown>")


@dataclass(frozen=True)
class LockId:
    """
    Approximate identity of a lock.

    ``STATIC`` locks are named by their allocation site. ``FIELD`` locks are
    reached through ``receiver`` (a local or parameter) followed by ``name``,
    a dotted field path, on a value of ``receiver_type``. ``HEAP`` locks sit
    behind an indirection nothing more is known about.
    """

    site: LockSite
    name: str = ""
    receiver: Optional[str] = None
    receiver_type: Optional[str] = None
    lock_type: str = ""

    def describe(self) -> str:
        if self.site is LockSite.STATIC:
            return self.name
        if self.site is LockSite.FIELD:
            return f"{self.receiver or '_'}.{self.name}"
        return f"<heap {self.lock_type or '?'}>"


@dataclass(frozen=True)
class Acquire:
    """Binds local ``guard`` to a new guard on ``lock``"""

    guard: str
    lock: LockId
    kind: GuardKind
    location: SourceLocation = UNKNOWN_LOCATION
    raii: bool = True


@dataclass(frozen=True)
class Release:
    """Explicit release of the guard bound to ``guard``"""

    guard: str
    location: SourceLocation = UNKNOWN_LOCATION


@dataclass(frozen=True)
class ScopeExit:
    """End of a lexical scope; RAII guards among ``locals`` are dropped"""

    locals: Tuple[str, ...]
    location: SourceLocation = UNKNOWN_LOCATION


Statement = Union[Acquire, Release, ScopeExit]


@dataclass(frozen=True)
class Goto:
    """Jump to one target, or branch when several targets are listed"""

    targets: Tuple[int, ...]


@dataclass(frozen=True)
class Call:
    """
    Call terminator.

    Exactly one of ``callee`` (direct call, an instance id) or ``signature``
    (indirect call through a trait object, function pointer or closure) is
    set. ``method`` narrows dynamic dispatch to implementations of one trait
    method. ``target`` is the block control returns to, ``None`` for calls
    that never return. ``destination`` is the local receiving the result,
    which matters when the callee returns a guard.
    """

    callsite: str
    callee: Optional[str] = None
    signature: Optional[str] = None
    method: Optional[str] = None
    target: Optional[int] = None
    destination: Optional[str] = None
    location: SourceLocation = UNKNOWN_LOCATION

    @property
    def is_indirect(self) -> bool:
        return self.callee is None


@dataclass(frozen=True)
class Return:
    """Return from the function, optionally handing ``value`` to the caller"""

    value: Optional[str] = None
    location: SourceLocation = UNKNOWN_LOCATION


Terminator = Union[Goto, Call, Return]


@dataclass(frozen=True)
class BasicBlock:
    """Straight-line statements followed by a terminator"""

    statements: Tuple[Statement, ...] = ()
    terminator: Terminator = Return()


@dataclass(frozen=True)
class Body:
    """Control-flow body of an instance; block 0 is the entry"""

    blocks: Tuple[BasicBlock, ...]

    def calls(self) -> Iterable[Call]:
        for block in self.blocks:
            if isinstance(block.terminator, Call):
                yield block.terminator


@dataclass(frozen=True)
class Instance:
    """A fully type-resolved function"""

    id: str
    def_path: str = field(default="", compare=False)
    type_args: Tuple[str, ...] = field(default=(), compare=False)
    signature: str = field(default="", compare=False)
    method: Optional[str] = field(default=None, compare=False)
    body: Optional[Body] = field(default=None, compare=False, repr=False)


@dataclass
class ProgramModel:
    """Snapshot of one compilation unit handed over by the compiler adapter"""

    unit_name: str
    instances: Dict[str, Instance]
    roots: Tuple[str, ...] = ()
    codegen: bool = True
    build_script: bool = False

    def __post_init__(self):
        if not self.roots:
            self.roots = tuple(
                sorted(i.id for i in self.instances.values() if i.body is not None)
            )

    def validate(self) -> None:
        """
        Check the model for inconsistencies that make analysis meaningless

        Raises:
            ProgramModelError: a root is missing, or a body jumps to a block
                that does not exist
        """
        missing = [root for root in self.roots if root not in self.instances]
        if missing:
            raise ProgramModelError(
                f"analysis roots not among supplied instances: {', '.join(missing)}"
            )
        for instance in self.instances.values():
            if instance.body is None:
                continue
            count = len(instance.body.blocks)
            if count == 0:
                raise ProgramModelError(f"{instance.id}: body has no blocks")
            for index, block in enumerate(instance.body.blocks):
                for target in successors(block.terminator):
                    if not 0 <= target < count:
                        raise ProgramModelError(
                            f"{instance.id}: bb{index} jumps to missing bb{target}"
                        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgramModel":
        """Build a model from the adapter's JSON document"""
        try:
            instances: Dict[str, Instance] = {}
            for raw in data["instances"]:
                instance = _parse_instance(raw)
                if instance.id in instances:
                    raise ProgramModelError(f"duplicate instance id: {instance.id}")
                instances[instance.id] = instance
            model = cls(
                unit_name=data.get("unit", ""),
                instances=instances,
                roots=tuple(data.get("roots", ())),
                codegen=data.get("codegen", True),
                build_script=data.get("build_script", False),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProgramModelError(f"malformed program model: {e!r}") from e
        model.validate()
        return model


def successors(terminator: Terminator) -> Tuple[int, ...]:
    """Blocks control may continue to inside the same body"""
    if isinstance(terminator, Goto):
        return terminator.targets
    if isinstance(terminator, Call) and terminator.target is not None:
        return (terminator.target,)
    return ()


def _location(raw: Optional[str]) -> SourceLocation:
    return SourceLocation.parse(raw) if raw else UNKNOWN_LOCATION


def _parse_lock(raw: Dict[str, Any]) -> LockId:
    lock_type = raw.get("lock_type", "")
    if "static" in raw:
        return LockId(LockSite.STATIC, raw["static"], lock_type=lock_type)
    if "field" in raw:
        return LockId(
            LockSite.FIELD,
            raw["field"],
            receiver=raw.get("receiver"),
            receiver_type=raw.get("receiver_type"),
            lock_type=lock_type,
        )
    return LockId(LockSite.HEAP, lock_type=lock_type)


def _parse_statement(raw: Dict[str, Any]) -> Statement:
    op = raw["op"]
    if op == "acquire":
        return Acquire(
            guard=raw["guard"],
            lock=_parse_lock(raw["lock"]),
            kind=GuardKind(raw.get("kind", "mutex")),
            location=_location(raw.get("location")),
            raii=raw.get("raii", True),
        )
    if op == "release":
        return Release(raw["guard"], _location(raw.get("location")))
    if op == "scope_exit":
        return ScopeExit(tuple(raw["locals"]), _location(raw.get("location")))
    raise ValueError(f"unknown statement op {op!r}")


def _parse_terminator(raw: Optional[Dict[str, Any]], index: int) -> Terminator:
    if raw is None:
        return Return()
    kind = raw["kind"]
    if kind == "goto":
        return Goto(tuple(raw["targets"]))
    if kind == "call":
        if ("callee" in raw) == ("signature" in raw):
            raise ValueError(f"bb{index}: call needs exactly one of callee/signature")
        return Call(
            callsite=raw.get("callsite", f"bb{index}"),
            callee=raw.get("callee"),
            signature=raw.get("signature"),
            method=raw.get("method"),
            target=raw.get("target"),
            destination=raw.get("destination"),
            location=_location(raw.get("location")),
        )
    if kind == "return":
        return Return(raw.get("value"), _location(raw.get("location")))
    raise ValueError(f"unknown terminator kind {kind!r}")


def _parse_instance(raw: Dict[str, Any]) -> Instance:
    body = None
    if raw.get("body") is not None:
        body = Body(
            tuple(
                BasicBlock(
                    tuple(_parse_statement(s) for s in block.get("statements", ())),
                    _parse_terminator(block.get("terminator"), index),
                )
                for index, block in enumerate(raw["body"]["blocks"])
            )
        )
    return Instance(
        id=raw["id"],
        def_path=raw.get("def_path", raw["id"]),
        type_args=tuple(raw.get("type_args", ())),
        signature=raw.get("signature", ""),
        method=raw.get("method"),
        body=body,
    )


def load_program_model(filepath: Path) -> ProgramModel:
    """
    Load a program model written by the compiler adapter

    Args:
        filepath: Path to the JSON program model

    Returns:
        The validated ProgramModel

    Raises:
        ProgramModelError: If the document is not valid JSON or is inconsistent
        OSError: If the file cannot be read
    """
    try:
        data = json.loads(Path(filepath).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ProgramModelError(f"{filepath}: invalid JSON: {e}") from e
    return ProgramModel.from_dict(data)
