__version__ = "2026.10.19a1"
