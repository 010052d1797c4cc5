#!/usr/bin/env python
__all__ = ["test_core", "test_format", "test_parse", "test_util", "test_treecodec"]
