"""
Code Journal Backend — Application Package
===========================================

What: A peer-review journal for source code. Authors publish submissions
      (a named set of source files), reviewers review them, editors approve
      or reject them, and anyone signed in can leave line-anchored comment
      threads on a file.

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Services (repository, comments,   │  ← keeps both stores in step
    │   approval, reconciliation, users)  │
    ├──────────────────┬──────────────────┤
    │ Relational store │ Filesystem store │  ← SQLAlchemy / aiofiles
    └──────────────────┴──────────────────┘
"""

__version__ = "1.0.0"
