#!/usr/bin/env python
__all__ = ["test_binary", "test_nexus", "test_nwka"]
