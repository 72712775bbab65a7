"""
Monzo API client → local transaction cache → command line

A small, testable client for the Monzo API with OAuth2 login, transparent
token refresh, and an on-disk transaction cache so repeated queries do not
hit the API.
"""

__version__ = "0.1.0"
