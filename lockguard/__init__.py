"""
LockGuard: interprocedural static detection of lock deadlocks.

Finds double-lock and conflict-lock patterns in a whole-program model of
monomorphized function instances and grades each finding Probably or
Possibly.

License: MIT
"""

__version__ = "0.3.0"

from lockguard.analysis import AnalysisResult, LockGuardAnalyzer, analyze_program
from lockguard.callgraph import CallGraph
from lockguard.detector import DeadlockDetector
from lockguard.lock_paths import collect_lock_paths
from lockguard.options import Options
from lockguard.report import ConflictLockReport, DoubleLockReport, Possibility

__all__ = [
    "AnalysisResult",
    "CallGraph",
    "ConflictLockReport",
    "DeadlockDetector",
    "DoubleLockReport",
    "LockGuardAnalyzer",
    "Options",
    "Possibility",
    "analyze_program",
    "collect_lock_paths",
]
