"""
Exception types raised by the autoscaler core
"""


class SmartScaleError(Exception):
    """Base exception for autoscaler operations"""

    pass


class StateStoreError(SmartScaleError):
    """Raised when the cluster state store cannot be read or written"""

    pass


class ConditionFailedError(StateStoreError):
    """Raised when a conditional state write is rejected

    The stored record did not match the expected state, or another owner
    modified it while the write was in flight.
    """

    pass


class ProvisioningError(SmartScaleError):
    """Raised when compute capacity cannot be launched"""

    pass


class PlacementError(ProvisioningError):
    """Raised when no zone or subnet is available for a new worker"""

    pass


class CallTimeoutError(SmartScaleError):
    """Raised when an external call exceeds its time budget"""

    pass
