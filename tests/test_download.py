import hashlib
import os

import pytest
import requests

from arm_image_builder.errors import BuildCanceled, ChecksumError, StepError
from arm_image_builder.lib import download as download_mod
from arm_image_builder.lib.cancel import CancelToken
from arm_image_builder.lib.download import Cache, download, local_path

PAYLOAD = b"raspbian image bytes" * 100


class FakeResponse:
    def __init__(self, payload, status=200, break_after=None):
        self.payload = payload
        self.status = status
        self.break_after = break_after  # chunks sent before the connection drops

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def iter_content(self, chunk_size):
        for i in range(0, len(self.payload), chunk_size):
            if self.break_after is not None and i >= self.break_after * chunk_size:
                raise requests.ConnectionError("connection reset")
            yield self.payload[i : i + chunk_size]


@pytest.fixture
def fake_get(monkeypatch):
    calls = []
    responses = {}

    def get(url, stream=False, timeout=None):
        calls.append(url)
        return responses.get(url) or FakeResponse(b"", status=404)

    monkeypatch.setattr(download_mod.requests, "get", get)
    return calls, responses


def _sha256(data):
    return hashlib.sha256(data).hexdigest()


def test_local_path():
    assert local_path("/images/a.img") == "/images/a.img"
    assert local_path("file:///images/my%20a.img") == "/images/my a.img"
    assert local_path("https://example.org/a.img") is None


def test_local_file_verified_in_place(tmp_path):
    image = tmp_path / "a.img"
    image.write_bytes(PAYLOAD)
    cache = Cache(str(tmp_path / "cache"))
    assert download([str(image)], _sha256(PAYLOAD), "sha256", cache) == str(image)

    with pytest.raises(ChecksumError):
        download([str(image)], "0" * 64, "sha256", cache)


def test_remote_download_and_cache_reuse(tmp_path, fake_get):
    calls, responses = fake_get
    url = "https://example.org/raspbian.img"
    responses[url] = FakeResponse(PAYLOAD)
    cache = Cache(str(tmp_path / "cache"))

    path = download([url], _sha256(PAYLOAD), "sha256", cache)
    assert path.endswith(".img")
    assert open(path, "rb").read() == PAYLOAD

    again = download([url], _sha256(PAYLOAD), "sha256", cache)
    assert again == path
    assert calls == [url]


def test_falls_through_to_next_url(tmp_path, fake_get):
    calls, responses = fake_get
    responses["https://mirror-b.example.org/img.img"] = FakeResponse(PAYLOAD)
    cache = Cache(str(tmp_path / "cache"))

    path = download(
        ["https://mirror-a.example.org/img.img", "https://mirror-b.example.org/img.img"],
        hashlib.md5(PAYLOAD).hexdigest(),
        "md5",
        cache,
    )
    assert open(path, "rb").read() == PAYLOAD
    assert len(calls) == 2


def test_interrupted_download_leaves_no_partial_file(tmp_path, fake_get):
    _, responses = fake_get
    url = "https://example.org/big.img"
    responses[url] = FakeResponse(b"x" * (3 * download_mod.CHUNK_SIZE), break_after=1)
    cache = Cache(str(tmp_path / "cache"))

    with pytest.raises(StepError, match="connection reset"):
        download([url], "", "none", cache)
    assert os.listdir(tmp_path / "cache") == []


def test_all_urls_fail(tmp_path, fake_get):
    with pytest.raises(StepError, match="Unable to download"):
        download(["https://example.org/missing.img"], "", "none", Cache(str(tmp_path / "cache")))


def test_cancelled_before_start(tmp_path, fake_get):
    token = CancelToken()
    token.cancel()
    with pytest.raises(BuildCanceled):
        download(["https://example.org/a.img"], "", "none", Cache(str(tmp_path)), cancel=token)
    assert fake_get[0] == []
