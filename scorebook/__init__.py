"""Scorebook: snapshot sync backend for the score and vocabulary study app."""
