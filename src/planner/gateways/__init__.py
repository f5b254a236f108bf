"""Thin wrappers around the external model and calendar APIs."""
