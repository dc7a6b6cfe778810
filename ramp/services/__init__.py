"""Services used by the ramp lifecycle engine."""
