"""Structured diagnostics for compile and verification findings."""
