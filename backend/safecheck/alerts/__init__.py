"""
alerts — Notification delivery with channel fallback.

Sub-modules:
    channels/        — Push and SMS adapters
    connectivity     — Online/offline tracking with edge-triggered listeners
    delivery_engine  — Push → SMS → offline queue for one recipient
    offline_queue    — Durable retry queue drained on reconnect
    fanout           — Concurrent emergency delivery to every contact
    models           — Recipient, queued message and outcome records
"""
