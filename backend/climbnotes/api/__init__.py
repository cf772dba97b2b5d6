"""Climbing Notes sync REST API package.

Sub-modules expose FastAPI routers for each domain:
- sync: row-level pull/push against the authoritative remote store
"""
