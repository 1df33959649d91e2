# freightdesk/modules/matching/__init__.py
"""
Matching module - transporter interest and assignment

- Express / withdraw availability on a published request
- List interested transporters with profile and date match
- Hide an interest from the client
- Commit exactly one transporter (compare-and-set on the request status)
"""

from .router import router
