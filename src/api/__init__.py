"""
HTTP interface for the digest frontend and admin triggers.
"""
from api.app import create_app

__all__ = ["create_app"]
