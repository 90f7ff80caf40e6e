from .step_00_download import DownloadStep
from .step_10_copy_image import CopyImageStep
from .step_20_resize_last_partition import ResizeLastPartitionStep
from .step_30_map_image import MapImageStep
from .step_35_resize_filesystem import ResizeFilesystemStep
from .step_40_mount_image import MountImageStep
from .step_45_mount_extra import MountExtraStep
from .step_50_install_qemu import InstallQemuStep
from .step_55_register_binfmt import RegisterBinfmtStep
from .step_60_chroot_provision import ChrootProvisionStep

__all__ = [
    "DownloadStep",
    "CopyImageStep",
    "ResizeLastPartitionStep",
    "MapImageStep",
    "ResizeFilesystemStep",
    "MountImageStep",
    "MountExtraStep",
    "InstallQemuStep",
    "RegisterBinfmtStep",
    "ChrootProvisionStep",
]
