"""
Per-unit analysis driver.

Decides whether a compilation unit is analyzed at all, then runs call graph
construction, lock path enumeration and detection, and logs the findings.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from lockguard.callgraph import CallGraph
from lockguard.detector import DeadlockDetector
from lockguard.lock_paths import collect_lock_paths
from lockguard.options import DetectorKind, Options
from lockguard.program_model import ProgramModel, load_program_model
from lockguard.report import Report, count_reports, report_stats, reports_to_json

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """Outcome of analyzing one compilation unit"""

    unit_name: str = ""
    reports: List[Report] = field(default_factory=list)
    skipped: Optional[str] = None  # reason the unit was not analyzed
    stats: Dict[str, Dict[str, int]] = field(default_factory=dict)
    metrics: Dict[str, int] = field(default_factory=dict)
    analysis_time: float = 0.0
    file_analyzed: str = ""


def skip_reason(program: ProgramModel, options: Options) -> Optional[str]:
    """Why ``program`` must not be analyzed, or None"""
    if options.crate_name_list.excludes(program.unit_name):
        return f"unit {program.unit_name} excluded by crate name list"
    if program.build_script:
        return "build script"
    if not program.codegen:
        return "no code generation requested"
    return None


class LockGuardAnalyzer:
    """Runs the deadlock detector on program models"""

    def __init__(self, options: Optional[Options] = None):
        # without explicit options, flags come from the environment
        self.options = options or Options.from_env()

    def analyze_file(self, filepath: Path) -> AnalysisResult:
        """
        Analyze a program model written by the compiler adapter

        Args:
            filepath: Path to the JSON program model

        Returns:
            AnalysisResult of the unit described by the file

        Raises:
            ProgramModelError: If the model is malformed or inconsistent
            OSError: If the file cannot be read
        """
        program = load_program_model(Path(filepath))
        result = self.analyze_program(program)
        result.file_analyzed = str(filepath)
        return result

    def analyze_program(self, program: ProgramModel) -> AnalysisResult:
        """
        Analyze one compilation unit

        Raises:
            ProgramModelError: If an analysis root is not among the instances
        """
        start_time = time.time()
        result = AnalysisResult(unit_name=program.unit_name)

        reason = skip_reason(program, self.options)
        if reason is not None:
            logger.debug("skipping %s: %s", program.unit_name, reason)
            result.skipped = reason
            return result

        program.validate()
        callgraph = CallGraph.build(program.instances.values())
        for component in callgraph.recursive_sccs():
            logger.debug("recursive call cycle: %s", " -> ".join(component))

        if self.options.detector_kind is DetectorKind.DEADLOCK:
            paths = collect_lock_paths(callgraph, program.roots, self.options)
            result.reports = DeadlockDetector(self.options).detect(paths)
            result.metrics = {
                "instances": callgraph.graph.number_of_nodes(),
                "call_edges": callgraph.graph.number_of_edges(),
                "unresolved_calls": len(callgraph.unresolved),
                "roots": len(program.roots),
                "lock_paths": len(paths),
            }

        if result.reports:
            logger.warning("%s", reports_to_json(result.reports))
            result.stats = report_stats(program.unit_name, result.reports)
        else:
            result.stats = count_reports(result.reports)
        result.analysis_time = time.time() - start_time
        return result


def analyze_program(
    program: ProgramModel, options: Optional[Options] = None
) -> Optional[List[Report]]:
    """
    Reports of ``program``, or None when the unit is skipped

    An analyzed unit without findings gives an empty list.
    """
    result = LockGuardAnalyzer(options).analyze_program(program)
    if result.skipped is not None:
        return None
    return result.reports
