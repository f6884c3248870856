"""Persistence for decisions, runtime state and decision memory."""
