"""EventHub: an event directory with capacity-bounded attendance."""
