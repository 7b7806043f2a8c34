"""
Shared Kernel Module
====================

Shared infrastructure used by both bounded contexts (SLA compliance and
escalation).

DO NOT add business logic from SLA or Escalation to shared kernel.
"""
