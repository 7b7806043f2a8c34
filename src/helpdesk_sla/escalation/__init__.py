"""
Escalation Module
=================

Bounded Context for organization-defined escalation rules.

Responsibilities:
- Evaluate age, priority and status triggers against a ticket
- Execute reassign, re-prioritize and notify actions
- Keep a firing ledger so a rule fires once per qualifying transition
- Report escalation statistics per organization
"""
