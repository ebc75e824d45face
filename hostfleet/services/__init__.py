"""Domain services for host lifecycle handling."""
