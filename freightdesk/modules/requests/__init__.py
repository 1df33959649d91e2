# freightdesk/modules/requests/__init__.py
"""
Requests module - transport request lifecycle

- Create, read, list and delete requests
- Qualify (price + publish for matching)
- Start, complete (with rating), cancel, archive, republish, requalify
- Payment flow after delivery

Architecture:
- state_machine.py: transition table and compare-and-set application
- router.py / service.py / repository.py / schemas.py
"""

from .router import router
