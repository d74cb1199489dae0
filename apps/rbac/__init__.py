"""
RBAC (Role-Based Access Control) application.

Provides:
- User identity and password lifecycle
- Roles, permissions and their assignments
- Effective permission evaluation with a per-user cache
- Server-side session registry and hybrid JWT/session authentication
"""
