"""
repobar

Repository state synchronization engine: keeps a local git working tree's
status, diffs and branch metadata in sync, and talks to GitHub for sign-in
and issues.
"""

__version__ = "0.1.0"
