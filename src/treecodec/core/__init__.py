__all__ = ["attributes", "traversal", "tree"]
