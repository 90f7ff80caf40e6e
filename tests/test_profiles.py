from arm_image_builder.profiles import ImageType, auto_detect_type, image_profiles, parse_image_type


def test_profiles_cover_every_image_type():
    profiles = image_profiles()
    assert set(profiles) == set(ImageType)
    assert profiles[ImageType.RASPBERRY_PI].mounts == ("/boot", "/")
    assert profiles[ImageType.RASPBERRY_PI].qemu_args == ()
    assert profiles[ImageType.BEAGLEBONE].mounts == ("/",)
    assert profiles[ImageType.BEAGLEBONE].qemu_args == ("-cpu", "cortex-a8")


def test_auto_detect_uses_first_url_only():
    assert auto_detect_type(["https://downloads.example.org/raspbian_lite.zip"]) is ImageType.RASPBERRY_PI
    assert auto_detect_type(["https://debian.example.org/bone-debian-9.img.xz"]) is ImageType.BEAGLEBONE
    assert auto_detect_type(["https://example.org/ubuntu.img", "https://example.org/raspbian.img"]) is None
    assert auto_detect_type([]) is None


def test_parse_image_type():
    assert parse_image_type("beaglebone") is ImageType.BEAGLEBONE
    assert parse_image_type("orangepi") is None
