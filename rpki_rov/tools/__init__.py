"""
Tool operations shared by the CLI and HTTP surfaces
"""

from .handlers import RPKITools, roa_response

__all__ = ['RPKITools', 'roa_response']
