"""Payment provider adapters and webhook handling."""
