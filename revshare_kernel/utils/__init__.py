"""Utility functions for the revenue-share kernel."""
