"""Shared helpers for the leads application."""
