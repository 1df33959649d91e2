# freightdesk/modules/pricing/__init__.py
"""
Pricing module - client / transporter / platform split

- heuristic.py: deterministic tariff
- ai_estimator.py: external estimator client (OpenAI-compatible)
- cache.py: process-local TTL cache
- engine.py: reconciliation, floor/ceiling and 60/40 split
- router.py: price preview endpoint
"""
