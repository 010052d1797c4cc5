#!/usr/bin/env python
__all__ = ["test_deserialise", "test_io", "test_result"]
