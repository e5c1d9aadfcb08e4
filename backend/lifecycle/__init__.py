"""Match lifecycle: status state machine and finished-match detection."""
