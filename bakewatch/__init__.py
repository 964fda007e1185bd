"""
bakewatch
=========

Watches static-site sources and triggers a rebuild when they change.

Features:
- Recursive directory watching on top of watchdog
- Per-file notifications while edits are sparse
- A single debounced refresh when many files change at once

Run ``bakewatch --help`` for the command line.
"""

__version__ = "0.1.0"
