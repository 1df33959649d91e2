# freightdesk/modules/coordination/__init__.py
"""
Coordination module - triage ledger

Coordination status, visibility, claim/release, notes and history.
"""

from .router import router
