"""
Notifications app.

Fans payment lifecycle events out to users' WebSocket notification groups
through Celery and Django Channels.
"""
