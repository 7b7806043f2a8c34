"""
SLA Compliance Module
=====================

Bounded Context for Service Level Agreement compliance.

Responsibilities:
- Compute business-hours deadlines for ticket response and resolution
- Resolve the SLA policy for an organization, priority and ticket type
- Record violations when deadlines pass without a completion timestamp
- Resolve violations once the completion timestamp appears
- Report violation statistics per organization
"""
