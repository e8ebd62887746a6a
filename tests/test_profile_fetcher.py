import pytest
import requests

from flutsign.src.core.errors import DownloadError
from flutsign.src.profile import profile_fetcher
from flutsign.src.profile.profile_fetcher import ProfileFetcher


class FakeResponse:
    def __init__(self, chunks, status_code=200):
        self.chunks = chunks
        self.status_code = status_code

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Client Error")

    def iter_content(self, chunk_size=None):
        return iter(self.chunks)


@pytest.fixture
def fake_get(monkeypatch):
    calls = []

    def install(response=None, exc=None):
        def _get(url, **kwargs):
            calls.append((url, kwargs))
            if exc is not None:
                raise exc
            return response

        monkeypatch.setattr(profile_fetcher.requests, "get", _get)
        return calls

    return install


@pytest.mark.parametrize("source", [None, "", "   "])
def test_no_source_returns_none(tmp_path, source):
    assert ProfileFetcher().fetch(source, tmp_path, "profile.mobileprovision") is None


def test_download_streams_to_destination(tmp_path, fake_get):
    calls = fake_get(FakeResponse([b"abc", b"", b"def"]))

    path = ProfileFetcher(timeout=5).fetch(
        "https://ci.example.com/profile.mobileprovision", tmp_path / "work", "profile.mobileprovision"
    )

    assert path == tmp_path / "work" / "profile.mobileprovision"
    assert path.read_bytes() == b"abcdef"
    url, kwargs = calls[0]
    assert url == "https://ci.example.com/profile.mobileprovision"
    assert kwargs["timeout"] == 5
    assert kwargs["stream"] is True


def test_http_error_raises_download_error(tmp_path, fake_get):
    fake_get(FakeResponse([b"not found"], status_code=404))

    with pytest.raises(DownloadError) as excinfo:
        ProfileFetcher().fetch("https://ci.example.com/missing", tmp_path, "profile.mobileprovision")

    assert excinfo.value.exit_code == 3
    assert "https://ci.example.com/missing" in str(excinfo.value)
    assert not (tmp_path / "profile.mobileprovision").exists()


def test_timeout_raises_download_error(tmp_path, fake_get):
    fake_get(exc=requests.exceptions.Timeout("read timed out"))

    with pytest.raises(DownloadError):
        ProfileFetcher().fetch("https://ci.example.com/slow", tmp_path, "certificate.p12")


def test_empty_body_raises_download_error(tmp_path, fake_get):
    fake_get(FakeResponse([]))

    with pytest.raises(DownloadError) as excinfo:
        ProfileFetcher().fetch("https://ci.example.com/empty", tmp_path, "certificate.p12")

    assert "empty" in excinfo.value.reason
    assert not (tmp_path / "certificate.p12").exists()


def test_local_path_is_copied(tmp_path):
    source = tmp_path / "source.p12"
    source.write_bytes(b"p12 data")

    path = ProfileFetcher().fetch(str(source), tmp_path / "work", "certificate.p12")

    assert path.read_bytes() == b"p12 data"


def test_file_url_is_copied(tmp_path):
    source = tmp_path / "source.cer"
    source.write_bytes(b"cer data")

    path = ProfileFetcher().fetch(source.as_uri(), tmp_path / "work", "certificate.cer")

    assert path.read_bytes() == b"cer data"


def test_missing_local_file_raises_download_error(tmp_path):
    with pytest.raises(DownloadError):
        ProfileFetcher().fetch(str(tmp_path / "nope.p12"), tmp_path, "certificate.p12")
