"""chatgate: passcode-gated real-time group chat backend."""
