"""Exception types raised by the task store and its backends."""


class TaskflowError(Exception):
    """Base class for all TaskFlow errors"""


class PersistenceError(TaskflowError):
    """A backend read or write failed (network, permissions, backend error)"""


class NotAuthenticatedError(PersistenceError):
    """Remote operation attempted without a current user"""


class SnapshotError(TaskflowError):
    """An import document could not be parsed; nothing was changed"""
