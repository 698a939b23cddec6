"""
watchrun.

Watches files and directories and keeps exactly one instance of a
command running, restarting it on every change.
Requires Python 3.11+.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
