"""Configuration and workflow data models."""
