"""
Deadlock detection over lock paths.

Double-lock: replaying a path's held stack, an acquisition aliasing a guard
that is still held.

Conflict-lock: the lock-order relation of a path holds ``A -> B`` when
``B`` is acquired while ``A`` is held. Two paths with ``A -> B`` and
``B -> A`` may each take their first lock and wait forever for the second.
Longer cycles through the order relations of several paths are found on the
class-level lock-order graph.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import networkx as nx

from lockguard.alias import AliasTier, ClassKey, alias_tier, class_key, class_label
from lockguard.lock_paths import LockEvent, LockGuardOperation, LockOp, LockPath
from lockguard.options import Options
from lockguard.program_model import GuardKind
from lockguard.report import (
    ConflictLockReport,
    DoubleLockReport,
    LockPairDiagnosis,
    Possibility,
    Report,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _OrderWitness:
    """``second`` was acquired on ``path`` while ``first`` was held"""

    path: int
    first: LockEvent
    second: LockEvent


@dataclass
class _Finding:
    possibility: Possibility
    pairs: List[Tuple[LockEvent, LockEvent]]
    callchains: List[List[Tuple[str, ...]]] = field(default_factory=list)

    def merge(self, possibility: Possibility, chains: Sequence[Tuple[str, ...]]) -> None:
        if possibility is Possibility.PROBABLY:
            self.possibility = possibility
        for known, chain in zip(self.callchains, chains):
            if chain not in known:
                known.append(chain)


def double_lock_possibility(
    first: GuardKind, second: GuardKind, tier: AliasTier, degraded: bool = False
) -> Possibility:
    """
    Grade re-acquisition of a held lock

    Only an exact alias of a non-reentrant guard on a fully tracked path is
    Probably. Re-entering a reentrant mutex, or taking a read guard twice
    (which only blocks when a writer queues in between) stays Possibly.
    """
    if tier is not AliasTier.EXACT or degraded:
        return Possibility.POSSIBLY
    if first.is_reentrant or second.is_reentrant:
        return Possibility.POSSIBLY
    if first.is_shared and second.is_shared:
        return Possibility.POSSIBLY
    return Possibility.PROBABLY


def _location_key(operation: LockGuardOperation) -> Tuple[str, int, int]:
    location = operation.location
    return (location.file, location.line, location.column)


def _lock_type(operation: LockGuardOperation) -> str:
    if operation.lock.lock_type:
        return f"{operation.kind.value}: {operation.lock.lock_type}"
    return operation.kind.value


def _diagnosis(
    first: LockEvent, second: LockEvent, callchains: Iterable[Tuple[str, ...]]
) -> LockPairDiagnosis:
    return LockPairDiagnosis(
        first_lock=first.operation.lock.describe(),
        first_lock_type=_lock_type(first.operation),
        first_lock_span=str(first.operation.location),
        second_lock=second.operation.lock.describe(),
        second_lock_type=_lock_type(second.operation),
        second_lock_span=str(second.operation.location),
        callchains=tuple(callchains),
    )


def _same_frame(first: LockEvent, second: LockEvent) -> bool:
    """Both events of one path ran in the same function activation"""
    return (
        first.frame == second.frame
        and first.operation.instance == second.operation.instance
    )


def _blocks(holder: LockEvent, waiter: LockEvent) -> bool:
    """Whether ``waiter`` surely waits for a guard of the same lock held by ``holder``"""
    return not (holder.operation.kind.is_shared and waiter.operation.kind.is_shared)


class DeadlockDetector:
    """Finds double-lock and conflict-lock patterns in lock paths"""

    def __init__(self, options: Optional[Options] = None):
        self.options = options or Options()

    def detect(self, paths: Iterable[LockPath]) -> List[Report]:
        """
        Detect deadlock patterns

        Args:
            paths: Lock paths in any order

        Returns:
            DoubleLock reports followed by ConflictLock reports, each group
            ordered by source location, identical for identical input
        """
        paths = sorted(set(paths), key=LockPath.sort_key)
        classes = {
            class_key(event.operation.lock) for path in paths for event in path.events
        }
        logger.debug("%d lock paths over %d alias classes", len(paths), len(classes))

        reports: List[Report] = []
        reports.extend(self._double_locks(paths))
        order = self._lock_order(paths)
        reports.extend(self._inversions(paths, order))
        if self.options.max_cycle_length >= 3:
            reports.extend(self._cycles(paths, order))
        return reports

    def _double_locks(self, paths: Sequence[LockPath]) -> List[DoubleLockReport]:
        findings: Dict[Tuple, _Finding] = {}
        for path in paths:
            held: List[int] = []
            for index, event in enumerate(path.events):
                operation = event.operation
                if operation.op is LockOp.RELEASE:
                    if event.acquire_index in held:
                        held.remove(event.acquire_index)
                    continue
                for held_index in held:
                    first = path.events[held_index]
                    tier = alias_tier(
                        first.operation.lock, operation.lock, _same_frame(first, event)
                    )
                    if tier is None:
                        continue
                    possibility = double_lock_possibility(
                        first.operation.kind, operation.kind, tier, path.degraded
                    )
                    key = (
                        _location_key(first.operation),
                        _location_key(operation),
                        class_key(first.operation.lock),
                        class_key(operation.lock),
                    )
                    chains = (event.callchain,)
                    if key not in findings:
                        findings[key] = _Finding(possibility, [(first, event)], [[]])
                    findings[key].merge(possibility, chains)
                held.append(index)

        reports = []
        for key in sorted(findings):
            finding = findings[key]
            first, second = finding.pairs[0]
            reports.append(
                DoubleLockReport(
                    finding.possibility, _diagnosis(first, second, finding.callchains[0])
                )
            )
        return reports

    def _lock_order(
        self, paths: Sequence[LockPath]
    ) -> Dict[Tuple[ClassKey, ClassKey], List[_OrderWitness]]:
        """First witness of every ``A -> B`` order edge, per path"""
        order: Dict[Tuple[ClassKey, ClassKey], List[_OrderWitness]] = {}
        for number, path in enumerate(paths):
            seen = set()
            held: List[int] = []
            for index, event in enumerate(path.events):
                if event.operation.op is LockOp.RELEASE:
                    if event.acquire_index in held:
                        held.remove(event.acquire_index)
                    continue
                second = class_key(event.operation.lock)
                for held_index in held:
                    first = class_key(path.events[held_index].operation.lock)
                    if first == second or (first, second) in seen:
                        continue
                    seen.add((first, second))
                    order.setdefault((first, second), []).append(
                        _OrderWitness(number, path.events[held_index], event)
                    )
                held.append(index)
        return order

    def _conflict_possibility(
        self, paths: Sequence[LockPath], witnesses: Sequence[_OrderWitness]
    ) -> Possibility:
        """
        Grade a cycle of order witnesses, each waiting on the next one's lock

        Probably needs every lock to be the exact same lock on both sides,
        every involved path fully tracked, and every wait a real block.
        """
        for position, witness in enumerate(witnesses):
            following = witnesses[(position + 1) % len(witnesses)]
            waiter = witness.second
            holder = following.first
            same_frame = witness.path == following.path and _same_frame(holder, waiter)
            tier = alias_tier(holder.operation.lock, waiter.operation.lock, same_frame)
            if tier is not AliasTier.EXACT or paths[witness.path].degraded:
                return Possibility.POSSIBLY
            if not _blocks(holder, waiter):
                return Possibility.POSSIBLY
        return Possibility.PROBABLY

    def _inversions(
        self,
        paths: Sequence[LockPath],
        order: Dict[Tuple[ClassKey, ClassKey], List[_OrderWitness]],
    ) -> List[ConflictLockReport]:
        findings: Dict[Tuple, _Finding] = {}
        for (a, b), forward in order.items():
            if a > b:
                continue
            backward = order.get((b, a), [])
            if backward:
                logger.debug("lock order inversion: %s <-> %s", class_label(a), class_label(b))
            for p in forward:
                for q in backward:
                    if p.path == q.path:
                        continue
                    key = (
                        (a, b),
                        _location_key(p.first.operation),
                        _location_key(p.second.operation),
                        _location_key(q.first.operation),
                        _location_key(q.second.operation),
                    )
                    possibility = self._conflict_possibility(paths, (p, q))
                    chains = (p.second.callchain, q.second.callchain)
                    if key not in findings:
                        findings[key] = _Finding(
                            possibility, [(p.first, p.second), (q.first, q.second)], [[], []]
                        )
                    findings[key].merge(possibility, chains)

        return [self._conflict_report(findings[key]) for key in sorted(findings)]

    def _cycles(
        self,
        paths: Sequence[LockPath],
        order: Dict[Tuple[ClassKey, ClassKey], List[_OrderWitness]],
    ) -> List[ConflictLockReport]:
        """Order cycles through three or more locks"""
        graph = nx.DiGraph()
        for (a, b), witnesses in sorted(order.items()):
            graph.add_edge(a, b, witnesses=witnesses)

        findings: Dict[Tuple, _Finding] = {}
        for cycle in nx.simple_cycles(graph, length_bound=self.options.max_cycle_length):
            if len(cycle) < 3:
                continue
            start = cycle.index(min(cycle))
            cycle = cycle[start:] + cycle[:start]
            if tuple(cycle) in findings:
                continue
            edges = [
                graph.edges[cycle[i], cycle[(i + 1) % len(cycle)]]["witnesses"]
                for i in range(len(cycle))
            ]
            witnesses = _spread_witnesses(edges)
            if witnesses is None:
                continue
            logger.debug("lock order cycle: %s", " -> ".join(class_label(k) for k in cycle))
            findings[tuple(cycle)] = _Finding(
                self._conflict_possibility(paths, witnesses),
                [(w.first, w.second) for w in witnesses],
                [[w.second.callchain] for w in witnesses],
            )

        return [self._conflict_report(findings[key]) for key in sorted(findings)]

    @staticmethod
    def _conflict_report(finding: _Finding) -> ConflictLockReport:
        return ConflictLockReport(
            finding.possibility,
            tuple(
                _diagnosis(first, second, chains)
                for (first, second), chains in zip(finding.pairs, finding.callchains)
            ),
        )


def _spread_witnesses(
    edges: Sequence[Sequence[_OrderWitness]],
) -> Optional[List[_OrderWitness]]:
    """
    One witness per edge, not all taken from the same path

    A cycle seen on a single path is that path locking in sequence, not two
    executions waiting on each other.
    """
    chosen = [witnesses[0] for witnesses in edges]
    if len({w.path for w in chosen}) > 1:
        return chosen
    for position, witnesses in enumerate(edges):
        for witness in witnesses:
            if witness.path != chosen[0].path:
                chosen[position] = witness
                return chosen
    return None
