"""
Engine services package.

Contains the process runner, git session and GitHub services.
"""
