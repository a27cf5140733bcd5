#!/usr/bin/env python3
"""
Legacy CMS collection and image migration tool
"""

__version__ = "0.1.0"
