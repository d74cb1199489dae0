"""
In-process event bus.

State-changing operations publish typed system events; listeners (the audit
trail first among them) subscribe without the publisher knowing about them.
"""
