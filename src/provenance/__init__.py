"""Chain-of-custody and inspection workflow transactions over an asset store."""

__version__ = "0.1.0"
