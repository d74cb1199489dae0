"""
Core application: shared base model, error taxonomy, structured logging,
request tracing, JWT authentication and permission enforcement for DRF views.
"""
