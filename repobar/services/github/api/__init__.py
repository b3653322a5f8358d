"""
GitHub API Module

Handles GitHub REST API interactions including:
- Authenticated requests and rate-limit tracking
- Issue listing, editing and comments
"""

from repobar.services.github.api.client import GitHubAPIClient
from repobar.services.github.api.issues import IssueClient

__all__ = [
    "GitHubAPIClient",
    "IssueClient",
]
