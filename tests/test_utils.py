"""Program model builders and canned scenarios for the LockGuard test suite."""

import json
from pathlib import Path
from typing import Dict, Iterable, Optional

from lockguard.program_model import (
    Acquire,
    BasicBlock,
    Body,
    Call,
    Goto,
    GuardKind,
    Instance,
    LockId,
    LockSite,
    ProgramModel,
    Release,
    Return,
    ScopeExit,
    SourceLocation,
)

SOURCE = "src/lib.rs"


def loc(line: int) -> SourceLocation:
    return SourceLocation(SOURCE, line, 5)


def static_lock(name: str, lock_type: str = "std::sync::Mutex<u32>") -> LockId:
    return LockId(LockSite.STATIC, name, lock_type=lock_type)


def field_lock(path: str, receiver: str, receiver_type: str = "app::Cache") -> LockId:
    return LockId(
        LockSite.FIELD,
        path,
        receiver=receiver,
        receiver_type=receiver_type,
        lock_type="std::sync::Mutex<Vec<u8>>",
    )


def heap_lock(lock_type: str = "std::sync::Mutex<u32>") -> LockId:
    return LockId(LockSite.HEAP, lock_type=lock_type)


def acquire(guard: str, lock: LockId, line: int, kind=GuardKind.MUTEX, raii=True):
    return Acquire(guard, lock, kind, loc(line), raii)


def release(guard: str, line: int) -> Release:
    return Release(guard, loc(line))


def scope_exit(*locals_: str, line: int = 0) -> ScopeExit:
    return ScopeExit(tuple(locals_), loc(line))


def block(*statements, terminator=None) -> BasicBlock:
    return BasicBlock(tuple(statements), terminator or Return())


def goto(*targets: int) -> Goto:
    return Goto(tuple(targets))


def call(
    callee: Optional[str] = None,
    target: Optional[int] = None,
    callsite: str = "bb0",
    signature: Optional[str] = None,
    method: Optional[str] = None,
    destination: Optional[str] = None,
) -> Call:
    return Call(
        callsite=callsite,
        callee=callee,
        signature=signature,
        method=method,
        target=target,
        destination=destination,
    )


def instance(
    instance_id: str, *blocks: BasicBlock, signature: str = "fn()", method=None
) -> Instance:
    body = Body(tuple(blocks)) if blocks else None
    return Instance(
        instance_id, def_path=instance_id, signature=signature, method=method, body=body
    )


def program(*instances: Instance, unit: str = "app", roots: Iterable[str] = ()) -> ProgramModel:
    return ProgramModel(unit, {i.id: i for i in instances}, tuple(roots))


def write_model(directory: Path, data: Dict, name: str = "model.json") -> Path:
    path = directory / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestData:
    """Scenarios shared by several test modules."""

    __test__ = False

    @staticmethod
    def double_lock_across_call() -> ProgramModel:
        """``f`` holds L and calls ``g``, which takes L again."""
        lock = static_lock("app::L")
        f = instance(
            "app::f",
            block(acquire("_1", lock, 3), terminator=call("app::g", target=1)),
            block(scope_exit("_1", line=5)),
        )
        g = instance("app::g", block(acquire("_2", lock, 10), scope_exit("_2", line=11)))
        return program(f, g, roots=["app::f"])

    @staticmethod
    def conflicting_order() -> ProgramModel:
        """``f`` takes A then B; ``g``, another root, takes B then A."""
        a, b = static_lock("app::A"), static_lock("app::B")
        f = instance(
            "app::f",
            block(acquire("_1", a, 3), acquire("_2", b, 4), scope_exit("_2", "_1", line=5)),
        )
        g = instance(
            "app::g",
            block(acquire("_1", b, 10), acquire("_2", a, 11), scope_exit("_2", "_1", line=12)),
        )
        return program(f, g, roots=["app::f", "app::g"])

    @staticmethod
    def mutual_recursion() -> ProgramModel:
        """``f`` holds A and calls ``g``, which calls back into ``f``."""
        a = static_lock("app::A")
        f = instance(
            "app::f",
            block(acquire("_1", a, 3), terminator=call("app::g", target=1)),
            block(scope_exit("_1", line=5)),
        )
        g = instance(
            "app::g",
            block(terminator=goto(1, 2)),
            block(terminator=call("app::f", target=2, callsite="bb1")),
            block(),
        )
        return program(f, g)

    @staticmethod
    def double_lock_json() -> Dict:
        """The adapter's JSON form of ``double_lock_across_call``."""
        lock = {"static": "app::L", "lock_type": "std::sync::Mutex<u32>"}
        return {
            "unit": "app",
            "codegen": True,
            "roots": ["app::f"],
            "instances": [
                {
                    "id": "app::f",
                    "signature": "fn()",
                    "body": {
                        "blocks": [
                            {
                                "statements": [
                                    {
                                        "op": "acquire",
                                        "guard": "_1",
                                        "lock": lock,
                                        "kind": "mutex",
                                        "location": "src/lib.rs:3:5",
                                    }
                                ],
                                "terminator": {
                                    "kind": "call",
                                    "callsite": "bb0",
                                    "callee": "app::g",
                                    "target": 1,
                                    "location": "src/lib.rs:4:5",
                                },
                            },
                            {
                                "statements": [
                                    {
                                        "op": "scope_exit",
                                        "locals": ["_1"],
                                        "location": "src/lib.rs:5:1",
                                    }
                                ],
                                "terminator": {"kind": "return"},
                            },
                        ]
                    },
                },
                {
                    "id": "app::g",
                    "signature": "fn()",
                    "body": {
                        "blocks": [
                            {
                                "statements": [
                                    {
                                        "op": "acquire",
                                        "guard": "_2",
                                        "lock": lock,
                                        "location": "src/lib.rs:10:5",
                                    },
                                    {"op": "release", "guard": "_2"},
                                ],
                                "terminator": {"kind": "return"},
                            }
                        ]
                    },
                },
                {"id": "std::io::_print", "signature": "fn(Arguments)", "body": None},
            ],
        }
