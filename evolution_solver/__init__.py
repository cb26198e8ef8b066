"""Evolution Solver: multi-generation evolutionary search for business solutions."""

__version__ = "0.3.0"
