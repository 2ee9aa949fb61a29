"""Clients for services the chat API delegates to."""
