"""Casino wager settlement service."""
