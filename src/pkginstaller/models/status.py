"""Status enums for the package installation state machine."""

from enum import Enum


class ConditionType(str, Enum):
    """Package installation stages, in execution order.

    State transitions:
    Init → DownloadPackage → UnpackPackage → PushImage → Ready

    Each stage may only run once its predecessor is Completed.
    """

    INIT = "Init"
    DOWNLOAD_PACKAGE = "DownloadPackage"
    UNPACK_PACKAGE = "UnpackPackage"
    PUSH_IMAGE = "PushImage"
    READY = "Ready"


# Fixed stage order; never reordered after a status is initialized
STAGE_ORDER = (
    ConditionType.INIT,
    ConditionType.DOWNLOAD_PACKAGE,
    ConditionType.UNPACK_PACKAGE,
    ConditionType.PUSH_IMAGE,
    ConditionType.READY,
)


class ConditionStatus(str, Enum):
    """Status of a single stage condition.

    Waiting → Running → Completed
                 ↓
               Failed  (cleared only by an external reset)
    """

    WAITING = "Waiting"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


class InstallMode(str, Enum):
    """How platform images reach the destination registry.

    - offline: a bundle of image tarballs is downloaded, unpacked, loaded and pushed
    - online: each image is pulled from a remote mirror and pushed
    - full_online: nothing to distribute, the package is ready immediately
    """

    OFFLINE = "offline"
    ONLINE = "online"
    FULL_ONLINE = "full_online"
