"""
Relying-party collaborators

HTTP client for a running relying party and a file-backed VRP source
for offline validation.
"""

from .client import LocalVRPSource, RelyingPartyClient, parse_vrp_export

__all__ = ['LocalVRPSource', 'RelyingPartyClient', 'parse_vrp_export']
