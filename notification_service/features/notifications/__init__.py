"""Notification feature: preferences, templates, channel dispatch and the orchestrator."""
