"""Subscription CSV to HubSpot sync service."""
