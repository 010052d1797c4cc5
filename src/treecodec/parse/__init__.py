__all__ = ["binary", "nexus", "nwka", "record"]
