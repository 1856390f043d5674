"""
Test package marker, so test modules import as `tests.test_*` and shared
imports resolve from the repository root.
"""
