"""Build, validate and query snapshots of an indexing network's topology."""

__version__ = "0.1.0"