"""Real-time chat over WebSockets.

Components:
    - RoomRouter: connection registry and room-scoped fan-out
    - PresenceTracker: distinct set of online identities
    - SessionGate: shared-passcode authentication
    - SignalingRelay: WebRTC call-setup pass-through
    - router: the WebSocket endpoint tying them together
"""
