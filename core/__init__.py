"""core/ -- Kernel: configuration, database primitive, errors and telemetry.

Layer rule: core/ has no reverse dependencies on api/, auth/, or pizza/.
"""
