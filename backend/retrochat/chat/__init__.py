"""Real-time chat rooms: message pipeline, room store, sessions and fan-out."""
