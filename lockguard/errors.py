"""Exception hierarchy for LockGuard."""


class LockGuardError(Exception):
    """Base class for all errors raised by LockGuard"""


class ProgramModelError(LockGuardError):
    """The supplied program model is inconsistent and cannot be analyzed"""


class ConfigError(LockGuardError):
    """Invalid analysis options"""
