"""HTTP surface for the RPKI tools"""

from .app import create_app

__all__ = ['create_app']
