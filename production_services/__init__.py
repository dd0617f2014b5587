"""
production_services -- operator-triggered actions.

Each action opens its own transaction, calls the kernel services and
returns a plain dict for the operator UI: ``{"error": code, ...}`` on
failure, never an exception.
"""
