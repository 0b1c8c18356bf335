"""
skproxy - streaming reverse proxy that injects a bearer credential.
"""

__version__ = "0.1.0"
