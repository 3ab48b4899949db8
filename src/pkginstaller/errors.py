"""Exception hierarchy for the package installer.

Three classes of failure drive what a reconciliation pass reports:

- PreconditionError: the cluster is not ready yet, nothing is marked failed
- StageError: the active stage failed and is marked Failed
- PersistenceError: the status could not be written back
"""

from pkginstaller.models.status import ConditionType


class InstallerError(Exception):
    """Base class for installer errors."""


class PreconditionError(InstallerError):
    """A prerequisite for running any stage is not met yet."""


class ClusterConfigNotReadyError(PreconditionError):
    def __init__(self, message: str = "cluster config is not completed"):
        super().__init__(message)


class ImageRepositoryNotReadyError(PreconditionError):
    def __init__(self, message: str = "destination image repository is not ready"):
        super().__init__(message)


class StageError(InstallerError):
    """An operation inside a stage failed."""


class DownloadError(StageError):
    pass


class ChecksumMismatchError(StageError, ValueError):
    def __init__(self, expected: str, actual: str):
        super().__init__(f"MD5_MISMATCH: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class UnpackError(StageError):
    pass


class ImageDistributionError(StageError):
    pass


class ImageStreamError(ImageDistributionError):
    """The image engine reported an error inside a progress stream."""


class OperationCancelledError(InstallerError):
    """The pass was cancelled while an operation was in flight."""


class StageFailedError(InstallerError):
    """A stage was marked Failed during this pass."""

    def __init__(self, stage: ConditionType, cause: BaseException):
        super().__init__(f"stage {stage.value} failed: {cause}")
        self.stage = stage
        self.cause = cause


class PersistenceError(InstallerError):
    """Status could not be written after exhausting conflict retries."""


class ConflictError(PersistenceError):
    """The stored object changed since it was read."""


class PackageNotFoundError(PersistenceError):
    pass
