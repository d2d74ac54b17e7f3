"""
Call graph over monomorphized instances.

Nodes are instance ids; every edge is keyed by the call site it comes from,
so a (caller, callee, call site) triple appears once no matter how often the
builder sees it. Indirect calls fan out to every instance with a compatible
signature.
"""

import logging
from collections import defaultdict
from typing import DefaultDict, Dict, Iterable, List, Set, Tuple

import networkx as nx

from lockguard.program_model import Call, Instance

logger = logging.getLogger(__name__)


class CallGraph:
    """Directed multigraph ``caller -> callee`` built once, read-only afterwards"""

    def __init__(self):
        self.graph = nx.MultiDiGraph()
        self.unresolved: Set[Tuple[str, str]] = set()
        self._targets: Dict[Tuple[str, str], Tuple[str, ...]] = {}

    @classmethod
    def build(cls, instances: Iterable[Instance]) -> "CallGraph":
        """
        Build the call graph of an instance set

        Args:
            instances: All instances of the analyzed snapshot

        Returns:
            CallGraph with one node per instance and one edge per resolved
            (caller, callee, call site)
        """
        callgraph = cls()
        by_id: Dict[str, Instance] = {}
        by_signature: DefaultDict[str, List[Instance]] = defaultdict(list)
        for instance in sorted(instances, key=lambda i: i.id):
            by_id[instance.id] = instance
            callgraph.graph.add_node(instance.id, instance=instance)
            if instance.signature:
                by_signature[instance.signature].append(instance)

        for caller in by_id.values():
            if caller.body is None:
                continue
            for call in caller.body.calls():
                targets = callgraph._resolve(caller, call, by_id, by_signature)
                callgraph._targets[(caller.id, call.callsite)] = targets
                for callee in targets:
                    callgraph.graph.add_edge(
                        caller.id,
                        callee,
                        key=call.callsite,
                        indirect=call.is_indirect,
                        location=call.location,
                    )

        logger.debug(
            "call graph: %d instances, %d edges, %d unresolved indirect calls",
            callgraph.graph.number_of_nodes(),
            callgraph.graph.number_of_edges(),
            len(callgraph.unresolved),
        )
        return callgraph

    def _resolve(
        self,
        caller: Instance,
        call: Call,
        by_id: Dict[str, Instance],
        by_signature: Dict[str, List[Instance]],
    ) -> Tuple[str, ...]:
        if not call.is_indirect:
            if call.callee in by_id:
                return (call.callee,)
            # external or opaque function: no-op leaf
            logger.debug("%s: dropping call to unknown %s", caller.id, call.callee)
            return ()

        candidates = tuple(
            instance.id
            for instance in by_signature.get(call.signature, ())
            if call.method is None or instance.method == call.method
        )
        if not candidates:
            logger.debug(
                "%s: no candidate for indirect call at %s (%s)",
                caller.id,
                call.callsite,
                call.signature,
            )
            self.unresolved.add((caller.id, call.callsite))
        return candidates

    def __contains__(self, instance_id: str) -> bool:
        return instance_id in self.graph

    def instance(self, instance_id: str) -> Instance:
        return self.graph.nodes[instance_id]["instance"]

    def callees(self, caller: str, callsite: str) -> Tuple[str, ...]:
        """Resolved targets of one call site, in stable order"""
        return self._targets.get((caller, callsite), ())

    def is_unresolved(self, caller: str, callsite: str) -> bool:
        return (caller, callsite) in self.unresolved

    def reachable_from(self, roots: Iterable[str]) -> Set[str]:
        reached: Set[str] = set()
        for root in roots:
            if root in self.graph and root not in reached:
                reached.add(root)
                reached.update(nx.descendants(self.graph, root))
        return reached

    def recursive_sccs(self) -> List[List[str]]:
        """Strongly connected components that contain a call cycle"""
        components = []
        for component in nx.strongly_connected_components(self.graph):
            members = sorted(component)
            if len(members) > 1 or self.graph.has_edge(members[0], members[0]):
                components.append(members)
        return sorted(components)
