class CmToolkitError(Exception):
    """Base class for every error a command reports and exits 1 on."""


class ConfigurationError(CmToolkitError):
    pass


class InvalidIdentifierError(CmToolkitError, ValueError):
    pass


class GraphError(CmToolkitError):
    pass


class AdminServiceError(CmToolkitError):
    pass


class DirectoryError(CmToolkitError):
    pass


class ScheduleError(CmToolkitError, ValueError):
    pass
