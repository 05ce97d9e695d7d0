"""storyloom: interactive branching-story studio."""

__version__ = "0.4.0"
