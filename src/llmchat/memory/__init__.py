"""Per-session conversation memory."""
