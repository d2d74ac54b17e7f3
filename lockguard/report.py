"""
Findings and their export.

Reports are immutable values. ``to_serializable_form`` produces the
externally tagged record downstream consumers parse, e.g.::

    {"DoubleLock": {"bug_kind": "DoubleLock", "possibility": "Probably",
                    "diagnosis": {...}, "explanation": "..."}}
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Sequence, Tuple, Union

logger = logging.getLogger(__name__)


class Possibility(Enum):
    """Confidence grade of a finding"""

    PROBABLY = "Probably"
    POSSIBLY = "Possibly"


@dataclass(frozen=True)
class LockPairDiagnosis:
    """Two acquisitions involved in a finding and the call chains reaching them"""

    first_lock: str
    first_lock_type: str
    first_lock_span: str
    second_lock: str
    second_lock_type: str
    second_lock_span: str
    callchains: Tuple[Tuple[str, ...], ...]

    def to_serializable_form(self) -> Dict[str, Any]:
        return {
            "first_lock": self.first_lock,
            "first_lock_type": self.first_lock_type,
            "first_lock_span": self.first_lock_span,
            "second_lock": self.second_lock,
            "second_lock_type": self.second_lock_type,
            "second_lock_span": self.second_lock_span,
            "callchains": [list(chain) for chain in self.callchains],
        }


@dataclass(frozen=True)
class DoubleLockReport:
    """A path acquires a lock it already holds"""

    possibility: Possibility
    diagnosis: LockPairDiagnosis
    explanation: str = "The first lock is not released when acquiring the second lock"

    bug_kind = "DoubleLock"

    def to_serializable_form(self) -> Dict[str, Any]:
        return {
            self.bug_kind: {
                "bug_kind": self.bug_kind,
                "possibility": self.possibility.value,
                "diagnosis": self.diagnosis.to_serializable_form(),
                "explanation": self.explanation,
            }
        }


@dataclass(frozen=True)
class ConflictLockReport:
    """Paths acquire the same locks in orders that can wait on each other"""

    possibility: Possibility
    diagnosis: Tuple[LockPairDiagnosis, ...]
    explanation: str = "Locks mutually wait for each other to form a cycle"

    bug_kind = "ConflictLock"

    def to_serializable_form(self) -> Dict[str, Any]:
        return {
            self.bug_kind: {
                "bug_kind": self.bug_kind,
                "possibility": self.possibility.value,
                "diagnosis": [d.to_serializable_form() for d in self.diagnosis],
                "explanation": self.explanation,
            }
        }


Report = Union[DoubleLockReport, ConflictLockReport]


def reports_to_json(reports: Sequence[Report]) -> str:
    return json.dumps([r.to_serializable_form() for r in reports], indent=2)


def count_reports(reports: Sequence[Report]) -> Dict[str, Dict[str, int]]:
    """Findings per kind and possibility, zero counts included"""
    stats = {
        "doublelock": {"probably": 0, "possibly": 0},
        "conflictlock": {"probably": 0, "possibly": 0},
    }
    for report in reports:
        stats[report.bug_kind.lower()][report.possibility.value.lower()] += 1
    return stats


def report_stats(unit_name: str, reports: Sequence[Report]) -> Dict[str, Dict[str, int]]:
    """Count findings per kind and possibility and log the summary line"""
    stats = count_reports(reports)
    logger.warning(
        "unit %s contains doublelock: { probably: %d, possibly: %d }, "
        "conflictlock: { probably: %d, possibly: %d }",
        unit_name,
        stats["doublelock"]["probably"],
        stats["doublelock"]["possibly"],
        stats["conflictlock"]["probably"],
        stats["conflictlock"]["possibly"],
    )
    return stats


def _diagnoses(report: Report) -> List[LockPairDiagnosis]:
    if isinstance(report, DoubleLockReport):
        return [report.diagnosis]
    return list(report.diagnosis)


def format_analysis_report(
    unit_name: str, reports: Sequence[Report], analysis_time: float = 0.0
) -> str:
    """Render findings of one unit as a text report"""
    report = []
    report.append("=" * 100)
    report.append("LockGuard Deadlock Analysis Report")
    report.append("=" * 100)
    report.append(f"Unit: {unit_name}")
    report.append(f"Analysis Time: {analysis_time:.3f} seconds")
    report.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    probably = [r for r in reports if r.possibility is Possibility.PROBABLY]
    report.append("\n" + "🔍 EXECUTIVE SUMMARY")
    report.append("-" * 50)
    if not reports:
        report.append("✅ NO DEADLOCK PATTERNS DETECTED")
    elif probably:
        report.append(f"🚨 {len(probably)} PROBABLE DEADLOCK(S) REQUIRE ATTENTION")
    else:
        report.append(f"ℹ️  {len(reports)} possible deadlock(s) detected - review recommended.")

    for kind in (DoubleLockReport.bug_kind, ConflictLockReport.bug_kind):
        found = [r for r in reports if r.bug_kind == kind]
        if not found:
            continue
        report.append("\n" + f"🔒 {kind.upper()}")
        report.append("-" * 50)
        for i, finding in enumerate(found, 1):
            report.append(f"{i}. [{finding.possibility.value}] {finding.explanation}")
            for diagnosis in _diagnoses(finding):
                report.append(
                    f"   📍 {diagnosis.first_lock} ({diagnosis.first_lock_type}) "
                    f"at {diagnosis.first_lock_span}"
                )
                report.append(
                    f"   📍 {diagnosis.second_lock} ({diagnosis.second_lock_type}) "
                    f"at {diagnosis.second_lock_span}"
                )
                for chain in diagnosis.callchains:
                    report.append(f"   ↳ {' -> '.join(chain)}")
            report.append("")

    report.append("\n" + "=" * 100)
    return "\n".join(report)
