"""
tokenvault.services
===================

Token engines (access, refresh, chained) and the manager that binds them to
one configuration. Shared pieces (base engine, error taxonomy) live in
:mod:`._shared`.
"""
