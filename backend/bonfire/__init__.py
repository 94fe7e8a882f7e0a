"""Bonfire: proximity-gated rendezvous for ephemeral chat sessions."""
