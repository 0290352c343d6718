"""
alerts — Geofenced Web Push alerts for verified incidents.

Sub-modules:
    channels/       — Push transports (VAPID Web Push, simulated)
    dispatcher      — Alert creation, geofence targeting, fan-out, dead-endpoint feedback
    subscriptions   — Push endpoint registry
    alert_feed      — Venue alert feed and archiving
    models          — Data structures shared across the system
"""
