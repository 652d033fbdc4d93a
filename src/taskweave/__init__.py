"""taskweave: tagged task store with a dependency graph and next-task scheduler."""

__version__ = "0.3.0"
