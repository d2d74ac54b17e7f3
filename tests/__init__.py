"""Test package for the LockGuard deadlock detector.

This package contains unit and integration tests for call graph
construction, lock path enumeration, detection and reporting.
"""
