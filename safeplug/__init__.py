"""SafePlug — run third-party plugins in a least-privilege sandbox."""

__version__ = "0.1.0"
