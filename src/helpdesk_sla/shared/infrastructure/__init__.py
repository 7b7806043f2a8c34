"""
Infrastructure Layer
=====================

Low-level technical concerns shared by the SLA and escalation modules:
- Logging setup
- Webhook notification delivery
"""
