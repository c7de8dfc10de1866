"""
Challenger session client.

Authenticated request pipeline and token lifecycle for the Challenger API.
"""
