"""CLI module for autoresponder."""
