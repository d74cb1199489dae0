"""
Audit trail: persists every privileged state change published on the event bus.
"""
