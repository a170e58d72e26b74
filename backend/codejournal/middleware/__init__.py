"""
Code Journal Backend — Middleware Package
==========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first):
    Request → [Request ID] → [Logging] → [Foreign Journal Token]
            → [GZip] → [CORS] → Route Handler

    Request ID runs before Logging so every access log line carries the ID.
    The token check only applies to `/federation` paths and answers 401
    itself, so rejected peer requests are still logged.
"""
