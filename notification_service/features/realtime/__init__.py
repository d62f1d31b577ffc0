"""Realtime feature: live WebSocket connections and the delivery registry."""
