"""stackplane — layered stack descriptions to canonical deployment plans."""

__version__ = "0.1.0"
