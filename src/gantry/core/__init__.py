# src/gantry/core/__init__.py
"""Core infrastructure: configuration, logging, security policy, text helpers."""
