import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
import pytest

from flavourly.config import Settings
from flavourly.errors import ExternalCleanupError
from flavourly.media import (
    CloudinaryMediaStore,
    DisabledMediaStore,
    MediaItem,
    build_media_store,
    cleanup_media,
    extract_public_id,
)
from flavourly.models import MediaType


class FakeDestroy:
    def __init__(self):
        self.calls = []
        self.responses = {}

    def __call__(self, public_id, **options):
        self.calls.append((public_id, options))
        outcome = self.responses.get(public_id, {"result": "ok"})
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def destroy(monkeypatch):
    fake = FakeDestroy()
    monkeypatch.setattr(cloudinary.uploader, "destroy", fake)
    return fake


def make_store():
    return CloudinaryMediaStore("demo", "key123", "secret", timeout=5.0)


@pytest.mark.parametrize(
    "url,expected",
    [
        (
            "https://res.cloudinary.com/demo/image/upload/v1712345/recipes/pie.jpg",
            "recipes/pie",
        ),
        ("https://res.cloudinary.com/demo/video/upload/clip.mp4", "clip"),
        ("https://res.cloudinary.com/demo/image/upload/v1/a/b/c.png", "a/b/c"),
        ("https://cdn.example.com/image/upload/pie.jpg", None),
        ("https://res.cloudinary.com/demo/image/fetch/pie.jpg", None),
        ("not a url", None),
    ],
)
def test_extract_public_id(url, expected):
    assert extract_public_id(url) == expected


def test_cloudinary_delete_calls_destroy(destroy):
    make_store().delete(
        MediaItem(
            "https://res.cloudinary.com/demo/video/upload/v9/recipes/clip.mp4",
            MediaType.VIDEO,
        )
    )

    assert destroy.calls == [
        ("recipes/clip", {"resource_type": "video", "invalidate": True, "timeout": 5.0})
    ]
    assert cloudinary.config().cloud_name == "demo"
    assert cloudinary.config().api_key == "key123"


def test_cloudinary_not_found_is_fine(destroy):
    destroy.responses["gone"] = {"result": "not found"}
    make_store().delete(MediaItem("https://res.cloudinary.com/demo/image/upload/gone.jpg"))
    assert [public_id for public_id, _ in destroy.calls] == ["gone"]


@pytest.mark.parametrize(
    "outcome",
    [
        {"result": "error"},
        {},
        cloudinary.exceptions.GeneralError("Server returned unexpected status code - 500"),
    ],
)
def test_cloudinary_failures_raise_cleanup_error(destroy, outcome):
    destroy.responses["pie"] = outcome
    url = "https://res.cloudinary.com/demo/image/upload/pie.jpg"

    with pytest.raises(ExternalCleanupError) as info:
        make_store().delete(MediaItem(url))
    assert info.value.url == url


def test_cloudinary_rejects_foreign_urls(destroy):
    with pytest.raises(ExternalCleanupError):
        make_store().delete(MediaItem("https://cdn.example.com/pie.jpg"))
    assert destroy.calls == []


def test_cleanup_continues_past_failures():
    class FlakyStore:
        def __init__(self):
            self.deleted = []

        def delete(self, item):
            if "bad" in item.url:
                raise ExternalCleanupError(item.url, "nope")
            if "worse" in item.url:
                raise RuntimeError("socket closed")
            self.deleted.append(item.url)

    store = FlakyStore()
    items = [MediaItem(u) for u in ("https://x/bad.jpg", "https://x/worse.jpg", "https://x/ok.jpg")]

    failures = cleanup_media(store, items)

    assert store.deleted == ["https://x/ok.jpg"]
    assert [f.url for f in failures] == ["https://x/bad.jpg", "https://x/worse.jpg"]
    assert all(f.reason == "external_cleanup_failed" for f in failures)


def test_cleanup_failures_are_not_http_errors():
    # collected on delete, never turned into a response status
    assert ExternalCleanupError("https://x/a.jpg").status_code == 500


def test_build_media_store():
    assert isinstance(build_media_store(Settings(disable_cloudinary=True)), DisabledMediaStore)
    assert isinstance(build_media_store(Settings(cloudinary_cloud_name="demo")), DisabledMediaStore)

    store = build_media_store(
        Settings(
            cloudinary_cloud_name="demo",
            cloudinary_api_key=" key ",
            cloudinary_api_secret="secret",
        )
    )
    assert isinstance(store, CloudinaryMediaStore)
    assert store.api_key == "key"
