"""Realtime connection module.

Provides:
    - ConnectionManager: The single WebSocket, its state machine and
      inbound frame routing.
    - SocketState: disconnected / connecting / connected.
"""
