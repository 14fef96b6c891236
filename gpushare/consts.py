"""Constants shared by the configuration API."""

RESOURCE_NAME_PREFIX = "nvidia.com"
DEFAULT_SHARED_RESOURCE_NAME_SUFFIX = ".shared"
MAX_RESOURCE_NAME_LENGTH = 63

MIG_STRATEGY_NONE = "none"
MIG_STRATEGY_SINGLE = "single"
MIG_STRATEGY_MIXED = "mixed"

DEVICE_LIST_STRATEGY_ENVVAR = "envvar"
DEVICE_LIST_STRATEGY_VOLUME_MOUNTS = "volume-mounts"
DEVICE_LIST_STRATEGY_CDI_ANNOTATIONS = "cdi-annotations"
DEVICE_LIST_STRATEGY_CDI_CRI = "cdi-cri"

DEVICE_ID_STRATEGY_UUID = "uuid"
DEVICE_ID_STRATEGY_INDEX = "index"

DEFAULT_CDI_ANNOTATION_PREFIX = "cdi.k8s.io/"
DEFAULT_NVIDIA_CTK_PATH = "/usr/bin/nvidia-ctk"
DEFAULT_CONTAINER_DRIVER_ROOT = "/driver-root"