"""Order workflow: placement, payment verification and lifecycle."""
