"""Dependency policy engine.

Evaluates third-party dependencies against tenant-scoped compliance policies:
scoped rule matching, multi-operator condition evaluation, time-bound
exceptions, enforcement actions, and batch result aggregation.
"""

__version__ = "0.1.0"
