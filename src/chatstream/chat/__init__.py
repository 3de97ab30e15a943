"""Conversation model, routing and coordination."""
