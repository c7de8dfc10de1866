"""
Shared components of the Challenger session client.

This package contains the data models, interfaces, exception hierarchy and
logging configuration used by the client package.
"""
