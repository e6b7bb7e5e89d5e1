"""
Voice client for the control plane.

Runs next to the UI (one controller per tab):
- VoiceController drives off -> connecting -> active -> disconnecting -> off
- EventSlot / BroadcastListener receive broadcast messages from the server
- VoiceEventBus notifies the UI about state, voice level, errors and goodbyes

No UI rendering here; the UI subscribes to the bus and reads the slot.
"""
