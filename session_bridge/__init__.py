"""
Helpdesk Session Bridge
=======================
Keeps a messaging-automation client session reconciled with a durable
document store and exposes operational status endpoints.
"""

__version__ = "1.0.0"
