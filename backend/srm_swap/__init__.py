"""
SRM Swap backend: campus marketplace trade lifecycle service.
"""
__version__ = "1.0.0"
