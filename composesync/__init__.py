"""
composesync - keeps docker compose units on a host in line with git sources.
"""

__version__ = "0.1.0"
