#!/usr/bin/env python
__all__ = ["test_attributes", "test_traversal", "test_tree"]
