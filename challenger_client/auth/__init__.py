"""
Authentication package for the Challenger session client.

This package contains the in-memory token store, secure token storage and
session lifecycle management.
"""
