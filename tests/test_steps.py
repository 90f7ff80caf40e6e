import os

import pytest

from arm_image_builder.build_config import prepare_config
from arm_image_builder.build_context import BuildContext
from arm_image_builder.errors import StepError
from arm_image_builder.lib.cancel import CancelToken
from arm_image_builder.lib.loop import PartitionDevice
from arm_image_builder.steps import (
    CopyImageStep,
    InstallQemuStep,
    MapImageStep,
    MountExtraStep,
    MountImageStep,
    RegisterBinfmtStep,
)
from arm_image_builder.ui import LoggingUi


@pytest.fixture
def cfg(raw_config):
    return prepare_config(raw_config)[0]


@pytest.fixture
def mapped_ctx():
    return BuildContext(
        image_file="/out/image",
        partitions=[PartitionDevice(1, "/dev/loop7p1"), PartitionDevice(2, "/dev/loop7p2")],
    )


def test_map_cleanup_is_idempotent(fake_host, tmp_path):
    image = tmp_path / "image"
    image.write_bytes(b"")
    ctx = BuildContext(image_file=str(image))
    step = MapImageStep(LoggingUi())
    step.execute(ctx, CancelToken())
    assert [p.path for p in ctx.partitions] == ["/dev/loop7p1", "/dev/loop7p2"]

    step.cleanup(ctx)
    step.cleanup(ctx)
    assert fake_host.commands("losetup")[-1] == ["losetup", "--detach", "/dev/loop7"]
    assert len([c for c in fake_host.calls if "--detach" in c]) == 1


def test_mount_image_orders_parents_first(fake_host, chroot_tmp, cfg, mapped_ctx):
    step = MountImageStep(cfg, LoggingUi())
    step.execute(mapped_ctx, CancelToken())
    root = mapped_ctx.mount_path
    assert os.path.dirname(root) == str(chroot_tmp)
    assert fake_host.commands("mount") == [
        ["mount", "/dev/loop7p2", os.path.join(root, "")],
        ["mount", "/dev/loop7p1", os.path.join(root, "boot")],
    ]

    step.cleanup(mapped_ctx)
    step.cleanup(mapped_ctx)
    assert fake_host.umount_targets() == [os.path.join(root, "boot"), os.path.join(root, "")]


def test_mount_image_rejects_extra_mount_points(fake_host, chroot_tmp, cfg):
    ctx = BuildContext(partitions=[PartitionDevice(1, "/dev/loop7p1")])
    with pytest.raises(StepError, match="only 1 partition"):
        MountImageStep(cfg, LoggingUi()).execute(ctx, CancelToken())


def test_mount_image_failure_keeps_earlier_mounts_for_cleanup(fake_host, chroot_tmp, cfg, mapped_ctx):
    fake_host.fail["mount /dev/loop7p1"] = 32
    step = MountImageStep(cfg, LoggingUi())
    with pytest.raises(StepError):
        step.execute(mapped_ctx, CancelToken())
    assert mapped_ctx.mount_path is None

    step.cleanup(mapped_ctx)
    assert len(fake_host.umount_targets()) == 1


def test_mount_extra_cleanup_is_idempotent(fake_host, tmp_path, cfg):
    ctx = BuildContext(mount_path=str(tmp_path / "root"))
    step = MountExtraStep(cfg, LoggingUi())
    step.execute(ctx, CancelToken())
    assert len(fake_host.mount_targets()) == 5

    step.cleanup(ctx)
    step.cleanup(ctx)
    assert fake_host.umount_targets() == list(reversed(fake_host.mount_targets()))


def test_emulation_steps(fake_host, tmp_path, cfg):
    root = tmp_path / "root"
    ctx = BuildContext(mount_path=str(root))
    MountExtraStep(cfg, LoggingUi()).execute(ctx, CancelToken())

    install = InstallQemuStep(cfg, LoggingUi())
    install.execute(ctx, CancelToken())
    assert ctx.qemu_in_chroot == "/usr/bin/qemu-arm-static"
    assert ctx.qemu_env == {}
    assert (root / "usr/bin/qemu-arm-static").exists()

    register = RegisterBinfmtStep(cfg, LoggingUi())
    register.execute(ctx, CancelToken())
    binfmt = root / "proc/sys/fs/binfmt_misc"
    assert (binfmt / "register").read_text().endswith(":/usr/bin/qemu-arm-static:")

    register.cleanup(ctx)
    register.cleanup(ctx)
    install.cleanup(ctx)
    install.cleanup(ctx)
    assert not (root / "usr/bin/qemu-arm-static").exists()


def test_install_qemu_restores_the_image_copy(tmp_path, cfg):
    root = tmp_path / "root"
    shipped = root / "usr/bin/qemu-arm-static"
    shipped.parent.mkdir(parents=True)
    shipped.write_bytes(b"shipped by image")
    ctx = BuildContext(mount_path=str(root))

    step = InstallQemuStep(cfg, LoggingUi())
    step.execute(ctx, CancelToken())
    assert shipped.read_bytes() != b"shipped by image"

    step.cleanup(ctx)
    step.cleanup(ctx)
    assert shipped.read_bytes() == b"shipped by image"
    assert os.listdir(shipped.parent) == ["qemu-arm-static"]


def test_copy_image_removed_only_on_failure(tmp_path, cfg):
    src = tmp_path / "downloaded.img"
    src.write_bytes(b"data")
    ctx = BuildContext(iso_path=str(src))
    step = CopyImageStep(cfg, LoggingUi())
    step.execute(ctx, CancelToken())
    assert ctx.image_file == os.path.join(cfg.output_directory, "image")

    step.cleanup(ctx)
    assert os.path.exists(ctx.image_file)

    ctx.halted = True
    step.cleanup(ctx)
    assert not os.path.exists(ctx.image_file)
