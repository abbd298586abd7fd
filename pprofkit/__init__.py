"""Performance profile model, string-table encoding, memory maps, filtering, merging and symbolz symbolization."""

__version__ = "0.1.0"

__all__ = [
    "model",
    "tables",
    "memmap",
    "filter",
    "merge",
    "index",
    "symbolz",
]