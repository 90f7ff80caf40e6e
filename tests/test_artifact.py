from arm_image_builder.artifact import BUILDER_ID, Artifact


def test_artifact(tmp_path):
    image = tmp_path / "image"
    image.write_bytes(b"img")
    artifact = Artifact(str(image))

    assert artifact.builder_id == BUILDER_ID
    assert artifact.id() == str(image)
    assert artifact.files() == [str(image)]
    assert str(artifact) == str(image)

    artifact.destroy()
    assert not image.exists()
