"""Compiler configuration: settings file, environment overrides, tool vocabulary."""
