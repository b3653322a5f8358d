"""
GitHub Service Package

Device-flow sign-in and issue tracking against the GitHub REST API.
"""
