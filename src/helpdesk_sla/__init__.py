"""
Helpdesk SLA Engine
===================

SLA compliance tracking and rule-based escalation for a multi-tenant
helpdesk.

Modules:
- sla: Business-hours deadlines, policies and violations
- escalation: Escalation rules, actions and the firing ledger

Entry points live in helpdesk_sla.services (HelpdeskSLAEngine,
TicketLifecycleHooks) and helpdesk_sla.main (engine_runtime).
"""

__version__ = "1.0.0"
