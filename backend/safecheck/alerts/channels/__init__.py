"""
channels — Per-channel delivery adapters.

Each adapter exposes:
    send(...) → (ok, error)

Adapters are single-attempt. Fallback and retry live in delivery_engine.
"""
