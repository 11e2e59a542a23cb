"""solvegraph: personal knowledge graph of solved algorithm problems."""

__version__ = "0.1.0"
