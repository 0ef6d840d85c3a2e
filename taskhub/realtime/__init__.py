"""Real-time event channel: presence, rooms, routing and notification push."""
