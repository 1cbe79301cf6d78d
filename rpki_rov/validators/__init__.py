"""
RPKI route origin validation

VRP repository, snapshot store and the RFC 6811 validation algorithm.
"""

from .repository import VRPRepository
from .rov import RPKIValidator, classify_invalid, validate_route
from .snapshot import VRPSnapshotStore

__all__ = [
    'VRPRepository',
    'RPKIValidator',
    'classify_invalid',
    'validate_route',
    'VRPSnapshotStore',
]
