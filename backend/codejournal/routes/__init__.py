"""
Code Journal Backend — API Routes Package
==========================================

Route Inventory:
    - auth.py:         POST /api/auth/register, POST /api/auth/login
    - users.py:        GET/DELETE /api/users/{id}, POST /api/users/{id}/permissions
    - submissions.py:  /api/submissions (create, zip, list, read, delete, files,
                       reviewers, reviews, approval)
    - comments.py:     /api/files/{file_id}/comments
    - maintenance.py:  POST /api/maintenance/reconcile
    - federation.py:   GET /federation/submissions, GET /federation/users/{id}
    - health.py:       GET /health

Design Principle:
    Routes are THIN: they decode request bodies, resolve the caller and call
    one service method. Errors propagate to the handlers in main.py.
"""
