"""Collaborators that talk to the outside world: node downloads and preparation commands."""
