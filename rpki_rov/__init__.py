"""
RPKI ROV - ROA decoding and route origin validation tools.

Provides relying-party backed RPKI tooling with:
- DER/CMS decoding and signature verification of ROA files
- RFC 6811 route origin validation against a VRP snapshot
- Relying-party status and VRP lookups by origin AS
- CLI and HTTP tool surfaces over the same handlers
"""

__version__ = "0.1.0"
__author__ = "RPKI ROV Project"
