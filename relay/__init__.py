"""Path-addressed forwarding proxy with a per-minute upstream budget."""
