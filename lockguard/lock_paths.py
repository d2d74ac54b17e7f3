"""
Lock state abstract interpretation along call paths.

Starting from each analysis root, bodies are walked block by block and
callees are inlined at their call sites, producing the ordered lock events
of every distinct traversal. A walk is a ``_PathState``; branches and
indirect calls with several targets fork the state. Termination on loops
and recursive call graphs comes from three bounds: call depth, revisits of
a block or instance on one path, and the number of paths kept per root.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from lockguard.callgraph import CallGraph
from lockguard.errors import ProgramModelError
from lockguard.options import Options
from lockguard.program_model import (
    Acquire,
    Call,
    GuardKind,
    Goto,
    LockId,
    Release,
    Return,
    ScopeExit,
    SourceLocation,
)

logger = logging.getLogger(__name__)

# explored states allowed per kept path before a root is cut short
_STATES_PER_PATH = 16


class LockOp(Enum):
    ACQUIRE = "acquire"
    RELEASE = "release"


@dataclass(frozen=True)
class LockGuardOperation:
    """Acquisition or release of a guard inside one instance body"""

    op: LockOp
    kind: GuardKind
    lock: LockId
    location: SourceLocation
    instance: str
    guard: str


@dataclass(frozen=True)
class LockEvent:
    """An operation met on a path, with the call chain that reached it"""

    operation: LockGuardOperation
    callchain: Tuple[str, ...]
    acquire_index: Optional[int] = None  # releases: event index of the acquire
    frame: int = 0  # number of the activation the operation ran in, unique per path


@dataclass(frozen=True)
class LockPath:
    """Lock events of one traversal from an analysis root"""

    root: str
    events: Tuple[LockEvent, ...]
    degraded: bool = False

    def acquisitions(self) -> List[Tuple[int, LockEvent]]:
        return [
            (index, event)
            for index, event in enumerate(self.events)
            if event.operation.op is LockOp.ACQUIRE
        ]

    def sort_key(self) -> Tuple:
        return (
            self.root,
            tuple(
                (str(e.operation.location), e.operation.op.value, e.callchain)
                for e in self.events
            ),
            self.degraded,
        )


@dataclass(frozen=True)
class _Frame:
    instance: str
    block: Optional[int]  # None: the pending call never returns
    stmt: int
    number: int
    return_to: Optional[str] = None  # caller local bound to our return value

    def at(self, block: Optional[int], stmt: int = 0) -> "_Frame":
        return _Frame(self.instance, block, stmt, self.number, self.return_to)


@dataclass(frozen=True)
class _Held:
    owner: Tuple[int, str]  # (frame number, guard local)
    event_index: int
    raii: bool


class _PathState:
    """Mutable walk state; ``fork`` gives an independent copy"""

    __slots__ = ("frames", "held", "events", "visits", "next_frame", "degraded")

    def __init__(self, root: str):
        self.frames: List[_Frame] = [_Frame(root, 0, 0, 0)]
        self.held: List[_Held] = []
        self.events: List[LockEvent] = []
        self.visits: Dict[Tuple[int, int], int] = {(0, 0): 1}  # (frame, block)
        self.next_frame = 1
        self.degraded = False

    def fork(self) -> "_PathState":
        other = _PathState.__new__(_PathState)
        other.frames = list(self.frames)
        other.held = list(self.held)
        other.events = list(self.events)
        other.visits = dict(self.visits)
        other.next_frame = self.next_frame
        other.degraded = self.degraded
        return other

    def key(self) -> Tuple:
        return (
            tuple(self.frames),
            tuple(self.held),
            tuple(self.events),
            tuple(sorted(self.visits.items())),
            self.degraded,
        )

    def callchain(self) -> Tuple[str, ...]:
        return tuple(frame.instance for frame in self.frames)


class LockStateInterpreter:
    """Enumerates lock paths over a read-only call graph"""

    def __init__(self, graph: CallGraph, options: Options):
        self.graph = graph
        self.options = options

    def paths_from(self, root: str) -> List[LockPath]:
        """
        Enumerate the distinct lock paths starting at ``root``

        Args:
            root: Instance id of the analysis root

        Returns:
            Paths with at least one acquisition, sorted by their stable key
        """
        if self.graph.instance(root).body is None:
            return []

        paths: Dict[Tuple, LockPath] = {}
        seen: Set[Tuple] = set()
        work = [_PathState(root)]
        explored = 0
        state_limit = self.options.max_paths * _STATES_PER_PATH

        while work:
            if len(paths) >= self.options.max_paths or explored >= state_limit:
                logger.warning(
                    "%s: path enumeration cut short after %d paths", root, len(paths)
                )
                break
            state = work.pop()
            explored += 1
            forks = self._advance(state, seen)
            if forks is None:
                path = LockPath(root, tuple(state.events), state.degraded)
                if path.acquisitions() and path.events not in paths:
                    paths[path.events] = path
            else:
                work.extend(reversed(forks))

        return sorted(paths.values(), key=LockPath.sort_key)

    def _advance(self, state: _PathState, seen: Set[Tuple]) -> Optional[List[_PathState]]:
        """
        Run ``state`` until it forks or finishes.

        Returns None when the walk finished, otherwise the states to continue
        with (possibly empty when every continuation was already explored).
        """
        while state.frames:
            frame = state.frames[-1]
            if frame.block is None:
                # returned into a caller whose call never returns
                state.frames.clear()
                break
            body = self.graph.instance(frame.instance).body
            block = body.blocks[frame.block]
            for statement in block.statements[frame.stmt :]:
                self._apply(state, frame, statement)
            state.frames[-1] = frame.at(frame.block, len(block.statements))

            terminator = block.terminator
            if isinstance(terminator, Return):
                self._return(state, terminator)
                continue
            if isinstance(terminator, Goto):
                successors = self._enter(state, terminator.targets, seen)
            else:
                successors = self._call(state, terminator, seen)
            if successors is None:
                break
            if len(successors) != 1:
                return successors
            state = successors[0]
        return None

    def _enter(
        self, state: _PathState, targets: Iterable[int], seen: Set[Tuple]
    ) -> Optional[List[_PathState]]:
        """Move the top frame to each allowed target; None if none is allowed"""
        frame = state.frames[-1]
        allowed = [
            t
            for t in targets
            if state.visits.get((frame.number, t), 0) < self.options.max_revisits
        ]
        if not allowed:
            # every way onwards loops past the bound: the path ends here
            return None
        successors = []
        for position, target in enumerate(allowed):
            child = state if position == len(allowed) - 1 else state.fork()
            visit = (frame.number, target)
            child.visits[visit] = child.visits.get(visit, 0) + 1
            child.frames[-1] = frame.at(target)
            key = child.key()
            if key in seen:
                continue
            seen.add(key)
            successors.append(child)
        return successors

    def _call(
        self, state: _PathState, call: Call, seen: Set[Tuple]
    ) -> Optional[List[_PathState]]:
        frame = state.frames[-1]
        if self.graph.is_unresolved(frame.instance, call.callsite):
            state.degraded = True

        inlinable = [
            callee
            for callee in self.graph.callees(frame.instance, call.callsite)
            if self._can_inline(state, callee)
        ]

        if not inlinable:
            if call.target is None:
                return None
            return self._enter(state, (call.target,), seen)

        successors = []
        for position, callee in enumerate(inlinable):
            child = state if position == len(inlinable) - 1 else state.fork()
            child.frames[-1] = frame.at(call.target)
            if call.target is not None:
                visit = (frame.number, call.target)
                child.visits[visit] = child.visits.get(visit, 0) + 1
            child.frames.append(_Frame(callee, 0, 0, child.next_frame, call.destination))
            child.visits[(child.next_frame, 0)] = 1
            child.next_frame += 1
            key = child.key()
            if key in seen:
                continue
            seen.add(key)
            successors.append(child)
        return successors

    def _can_inline(self, state: _PathState, callee: str) -> bool:
        if self.graph.instance(callee).body is None:
            return False
        if len(state.frames) >= self.options.max_depth:
            return False
        active = sum(1 for frame in state.frames if frame.instance == callee)
        return active < self.options.max_revisits

    def _apply(self, state: _PathState, frame: _Frame, statement) -> None:
        if isinstance(statement, Acquire):
            state.events.append(
                LockEvent(
                    LockGuardOperation(
                        LockOp.ACQUIRE,
                        statement.kind,
                        statement.lock,
                        statement.location,
                        frame.instance,
                        statement.guard,
                    ),
                    state.callchain(),
                    frame=frame.number,
                )
            )
            state.held.append(
                _Held(
                    (frame.number, statement.guard),
                    len(state.events) - 1,
                    statement.raii,
                )
            )
        elif isinstance(statement, Release):
            held = self._find_held(state, frame.number, statement.guard)
            if held is None:
                logger.debug(
                    "%s: release of %s at %s matches no held guard",
                    frame.instance,
                    statement.guard,
                    statement.location,
                )
                state.degraded = True
                return
            self._release(state, held, statement.location)
        elif isinstance(statement, ScopeExit):
            for held in reversed(list(state.held)):
                number, guard = held.owner
                if held.raii and number == frame.number and guard in statement.locals:
                    self._release(state, held, statement.location)

    @staticmethod
    def _find_held(state: _PathState, frame_number: int, guard: str) -> Optional[_Held]:
        for held in reversed(state.held):
            if held.owner == (frame_number, guard):
                return held
        # manual lock/unlock pairs may be split across functions
        for held in reversed(state.held):
            if not held.raii and held.owner[1] == guard:
                return held
        return None

    def _release(self, state: _PathState, held: _Held, location: SourceLocation) -> None:
        acquired = state.events[held.event_index].operation
        state.held.remove(held)
        state.events.append(
            LockEvent(
                LockGuardOperation(
                    LockOp.RELEASE,
                    acquired.kind,
                    acquired.lock,
                    location,
                    state.frames[-1].instance,
                    acquired.guard,
                ),
                state.callchain(),
                held.event_index,
                frame=state.frames[-1].number,
            )
        )

    def _return(self, state: _PathState, terminator: Return) -> None:
        frame = state.frames[-1]
        caller = state.frames[-2] if len(state.frames) > 1 else None
        for held in reversed(list(state.held)):
            number, guard = held.owner
            if number != frame.number:
                continue
            if guard == terminator.value and caller is not None and frame.return_to:
                # guard moved out to the caller
                state.held[state.held.index(held)] = _Held(
                    (caller.number, frame.return_to), held.event_index, held.raii
                )
            elif held.raii:
                # locals are dropped when the function returns
                self._release(state, held, terminator.location)
        state.frames.pop()


def collect_lock_paths(
    graph: CallGraph, roots: Iterable[str], options: Optional[Options] = None
) -> List[LockPath]:
    """
    Enumerate lock paths for every analysis root

    Roots are independent: with ``options.workers > 1`` they are spread over
    a thread pool, each worker only reading the graph. When
    ``options.time_budget`` runs out, roots that have not started yet are
    skipped; a started root always contributes all of its paths.

    Args:
        graph: Call graph of the snapshot
        roots: Instance ids to start from
        options: Bounds and parallelism; defaults when omitted

    Returns:
        Paths of all roots, ordered by root id and path key

    Raises:
        ProgramModelError: If a root is not a node of the call graph
    """
    options = options or Options()
    roots = sorted(set(roots))
    missing = [root for root in roots if root not in graph]
    if missing:
        raise ProgramModelError(f"analysis roots not in call graph: {', '.join(missing)}")

    interpreter = LockStateInterpreter(graph, options)
    deadline = None
    if options.time_budget is not None:
        deadline = time.monotonic() + options.time_budget

    def run(root: str) -> Optional[List[LockPath]]:
        if deadline is not None and time.monotonic() > deadline:
            return None
        return interpreter.paths_from(root)

    if options.workers > 1 and len(roots) > 1:
        with ThreadPoolExecutor(max_workers=options.workers) as pool:
            results = list(pool.map(run, roots))
    else:
        results = [run(root) for root in roots]

    paths: List[LockPath] = []
    skipped = 0
    for result in results:
        if result is None:
            skipped += 1
        else:
            paths.extend(result)
    if skipped:
        logger.warning("time budget exhausted: %d of %d roots skipped", skipped, len(roots))
    logger.debug("collected %d lock paths from %d roots", len(paths), len(roots))
    return paths
