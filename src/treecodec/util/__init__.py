__all__ = ["deserialise", "io", "misc", "result"]
