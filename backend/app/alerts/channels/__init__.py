"""
channels — Delivery backends.

Each transport exposes:
    async send(subscription, payload) → DeliveryOutcome

Transports never raise for a failed delivery; the outcome says what
happened. Timeouts and fan-out live in the dispatcher.
"""
