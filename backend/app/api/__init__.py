"""REST API package.

Sub-modules expose FastAPI routers:
- search: search, suggestions, history and analytics for the authenticated user
"""
