"""Core domain for the loyalty platform."""
