"""Smart context engine: ranks, packs and learns which files matter for a coding task."""

__version__ = "2.0.0"
