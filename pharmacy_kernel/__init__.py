"""
pharmacy_kernel -- core of the returns & replacement reconciliation engine.

Owns the typed errors, structured logging, domain DTOs, persistence
(ORM models and the async store port), store call policy and the scoped
sequence allocator.  Nothing in this package imports from
``pharmacy_engines``, ``pharmacy_services`` or ``pharmacy_config``.
"""
