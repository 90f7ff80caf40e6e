from arm_image_builder.lib.mounts import MountEntry, in_chroot, mount_argv, mount_entry, order_by_depth, umount_all


def test_mount_argv():
    assert mount_argv(MountEntry("/dev", "/r/dev", "bind")) == ["mount", "--bind", "/dev", "/r/dev"]
    assert mount_argv(MountEntry("proc", "/r/proc", "proc")) == ["mount", "-t", "proc", "proc", "/r/proc"]
    assert mount_argv(MountEntry("/dev/loop0p2", "/r", "", primary=True)) == ["mount", "/dev/loop0p2", "/r"]


def test_in_chroot():
    assert in_chroot("/tmp/root", "/") == "/tmp/root/"
    assert in_chroot("/tmp/root", "/proc/sys/fs/binfmt_misc") == "/tmp/root/proc/sys/fs/binfmt_misc"


def test_order_by_depth_is_stable():
    planned = [(0, "/boot"), (1, "/"), (2, "/boot/firmware"), (3, "/home")]
    assert order_by_depth(planned) == [(1, "/"), (0, "/boot"), (3, "/home"), (2, "/boot/firmware")]


def test_mount_creates_target(fake_host, tmp_path):
    target = tmp_path / "root" / "dev" / "pts"
    mount_entry(MountEntry("devpts", str(target), "devpts"))
    assert target.is_dir()
    assert fake_host.calls == [["mount", "-t", "devpts", "devpts", str(target)]]


def test_umount_all_reverse_and_reports_failures(fake_host):
    entries = [MountEntry("proc", "/r/proc", "proc"), MountEntry("sysfs", "/r/sys", "sysfs")]
    fake_host.fail["umount /r/proc"] = 32
    failed = umount_all(entries)
    assert fake_host.umount_targets() == ["/r/sys", "/r/proc"]
    assert failed == [entries[0]]


def test_umount_retry_keeps_innermost_first(fake_host):
    entries = [
        MountEntry("/dev/loop7p2", "/r/", "", primary=True),
        MountEntry("/dev/loop7p1", "/r/boot", "", primary=True),
    ]
    fake_host.fail["umount"] = 32
    failed = umount_all(entries)
    assert failed == entries

    umount_all(failed)
    assert fake_host.umount_targets() == ["/r/boot", "/r/", "/r/boot", "/r/"]
