"""Maintenance Request Orchestrator

This service drives the maintenance-request pipeline for a housing organization:
- Triages requester conversations into structured case drafts
- Creates cases and matches them to capable contractors
- Issues signed approval tokens for occupant site-access consent
- Notifies admins, contractors and occupants over push, email and SMS
"""

__version__ = "1.0.0"
