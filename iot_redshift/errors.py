"""
Stack composition errors
Every failure raised while building or rendering a stack graph
"""


class StackCompositionError(Exception):
    """Base error for stack graph construction and rendering"""
    pass


class ConfigurationError(StackCompositionError):
    """Invalid or incomplete build configuration"""
    pass


class UnknownRegionError(StackCompositionError):
    """Region is absent from the Firehose CIDR table"""

    def __init__(self, region: str, supported=()):
        self.region = region
        self.supported = tuple(supported)
        message = f"No Firehose CIDR block is mapped for region '{region}'"
        if self.supported:
            message += f" (supported: {', '.join(self.supported)})"
        super().__init__(message)


class UnresolvedDependencyError(StackCompositionError):
    """A deferred reference points at a resource that was never declared"""
    pass


class CyclicDependencyError(UnresolvedDependencyError):
    """Resources reference each other so no declaration order exists"""
    pass


class DuplicateResourceError(StackCompositionError):
    """Logical ID declared twice in the same stack"""
    pass


class InvalidParameterError(StackCompositionError):
    """Parameter value does not satisfy its declared type or range"""
    pass


class MissingPermissionError(StackCompositionError):
    """Role lacks the permission a resource needs to act on its target"""
    pass


class DeviceSimulatorError(Exception):
    """AWS call made by the device simulator failed"""
    pass
