"""Cloud host status reconciliation for the build/test worker fleet."""
