"""
Escalation Application DTOs
============================

Payloads produced by the escalation services.
"""

from typing import Optional

from pydantic import BaseModel


class EscalationNotification(BaseModel):
    """Payload sent by notify_user and notify_list actions."""
    event: str = "ticket_escalated"
    ticket_id: str
    ticket_number: str
    subject: str
    priority: str
    escalation_rule: str
    action: str
    ticket_url: str
    recipient_name: Optional[str] = None
