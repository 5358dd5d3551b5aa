"""State layer.

Holds the in-memory device directory shared by the webhook, command and
full-sync paths.
"""
