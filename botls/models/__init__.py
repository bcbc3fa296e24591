"""Pydantic models and enums shared across botls."""
