"""
Web presentation layer for Shipyard pipelines.

Architectural Intent:
- Exposes REST endpoints for triggers, build artifacts, approvals and run status
- Serves a small HTML overview of recent runs
- Uses Python stdlib only (http.server + asyncio)
"""
