"""Multi-channel helpdesk and small-business operations service."""
