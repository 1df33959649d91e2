# freightdesk/modules/offers/__init__.py
"""
Offers module - legacy direct price proposals

Accepting an offer commits the request the same way an assignment does,
so only one of the two paths can win.
"""

from .router import router
