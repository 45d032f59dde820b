"""
Disk Search: background content indexing and search for local directories.
"""

__version__ = "0.1.0"
