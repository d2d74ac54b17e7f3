"""
Analysis options.

Options come from the command line or from the ``LOCKGUARD_FLAGS``
environment variable, which lets a compiler wrapper pass flags through
without touching its own argument list, e.g.::

    LOCKGUARD_FLAGS="-k deadlock -b -l build_helpers,vendored_rt"
"""

import argparse
import os
import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from lockguard.errors import ConfigError

FLAGS_ENV = "LOCKGUARD_FLAGS"


class DetectorKind(Enum):
    """Detectors that can be run on a unit"""

    DEADLOCK = "deadlock"


class ListMode(Enum):
    WHITE = "white"
    BLACK = "black"


@dataclass(frozen=True)
class CrateNameList:
    """Allow-list (white) or deny-list (black) of compilation unit names"""

    mode: ListMode = ListMode.WHITE
    names: Tuple[str, ...] = ()

    def excludes(self, unit_name: str) -> bool:
        """True when analysis of ``unit_name`` must be skipped"""
        if self.mode is ListMode.WHITE:
            return bool(self.names) and unit_name not in self.names
        return unit_name in self.names


@dataclass
class Options:
    """Knobs of one analysis run"""

    detector_kind: DetectorKind = DetectorKind.DEADLOCK
    crate_name_list: CrateNameList = field(default_factory=CrateNameList)
    max_depth: int = 16  # call-stack depth before calls become leaves
    max_revisits: int = 2  # entries of one block / one instance per path
    max_paths: int = 4096  # distinct lock paths kept per root
    max_cycle_length: int = 4  # longest lock-order cycle searched
    workers: int = 1
    time_budget: Optional[float] = None  # seconds; checked between roots

    def __post_init__(self):
        for name in ("max_depth", "max_revisits", "max_paths", "workers"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1")
        if self.max_cycle_length < 2:
            raise ConfigError("max_cycle_length must be at least 2")
        if self.time_budget is not None and self.time_budget <= 0:
            raise ConfigError("time_budget must be positive")

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Options":
        raw_names = (args.crate_name_list or "").split(",")
        names = tuple(n.strip() for n in raw_names if n.strip())
        return cls(
            detector_kind=DetectorKind(args.detector_kind),
            crate_name_list=CrateNameList(
                ListMode.BLACK if args.blacklist_mode else ListMode.WHITE, names
            ),
            max_depth=args.max_depth,
            max_revisits=args.max_revisits,
            max_paths=args.max_paths,
            max_cycle_length=args.max_cycle_length,
            workers=args.workers,
            time_budget=args.time_budget,
        )

    @classmethod
    def from_flags(cls, flags: List[str]) -> "Options":
        return cls.from_args(parse_flags(flags))

    @classmethod
    def from_env(cls) -> "Options":
        """Options from ``LOCKGUARD_FLAGS``; defaults when unset"""
        return cls.from_flags(env_flags())


def env_flags() -> List[str]:
    """Flags passed through ``LOCKGUARD_FLAGS``, split like a shell would"""
    return shlex.split(os.environ.get(FLAGS_ENV, ""))


def parse_flags(flags: List[str]) -> argparse.Namespace:
    """
    Parse analysis flags outside of a command line

    Raises:
        ConfigError: If a flag is unknown or has an invalid value
    """
    parser = argparse.ArgumentParser(prog=FLAGS_ENV, add_help=False)
    add_option_arguments(parser)
    try:
        return parser.parse_args(flags)
    except SystemExit as e:
        raise ConfigError(f"invalid {FLAGS_ENV}: {' '.join(flags)}") from e


def add_option_arguments(parser: argparse.ArgumentParser) -> None:
    """Register the analysis flags shared by the CLI and ``LOCKGUARD_FLAGS``"""
    parser.add_argument(
        "-k",
        "--detector-kind",
        choices=[k.value for k in DetectorKind],
        default=DetectorKind.DEADLOCK.value,
        help="Detector to run",
    )
    parser.add_argument(
        "-b",
        "--blacklist-mode",
        action="store_true",
        help="Treat --crate-name-list as a deny-list instead of an allow-list",
    )
    parser.add_argument(
        "-l",
        "--crate-name-list",
        default="",
        help="Comma separated compilation unit names to allow (or deny with -b)",
    )
    parser.add_argument("--max-depth", type=int, default=16, help="Maximum call depth")
    parser.add_argument(
        "--max-revisits",
        type=int,
        default=2,
        help="Times a block or function may be revisited on one path",
    )
    parser.add_argument(
        "--max-paths", type=int, default=4096, help="Maximum lock paths per root"
    )
    parser.add_argument(
        "--max-cycle-length",
        type=int,
        default=4,
        help="Longest lock-order cycle to search for",
    )
    parser.add_argument(
        "--workers", type=int, default=1, help="Threads used to enumerate roots"
    )
    parser.add_argument(
        "--time-budget",
        type=float,
        default=None,
        help="Stop starting new roots after this many seconds",
    )
