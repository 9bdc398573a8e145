"""
Breakage export.

Records inventory breakage entries and flushes them to the fixed-format
text files read by the external inventory system.
"""

__version__ = "0.1.0"
