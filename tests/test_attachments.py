import httpx
import pytest

from conftest import data_url
from hairlab.attachments import AttachmentFetcher, decode_data_url, guess_mime_type
from hairlab.errors import FetchError
from hairlab.models import OPTIONAL_SLOTS, REQUIRED_SLOTS


def fetcher_for(handler) -> AttachmentFetcher:
    return AttachmentFetcher(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.parametrize(
    "url, slot, content_type, expected",
    [
        ("https://cdn.test/a.png", "front-photo", None, "image/png"),
        ("https://cdn.test/a.PNG?token=1", "front-photo", None, "image/png"),
        ("https://cdn.test/o/user%2Fclip.mp4?alt=media", "front-video", None, "video/mp4"),
        ("https://cdn.test/clip", "back-video", "application/octet-stream", "video/quicktime"),
        ("https://cdn.test/photo", "side-photo", None, "image/jpeg"),
        ("https://cdn.test/photo", "side-photo", "image/webp; charset=binary", "image/webp"),
        ("https://cdn.test/clip.mp4", "front-photo", None, "image/jpeg"),
        ("https://cdn.test/a.png", "front-video", "image/png", "video/quicktime"),
    ],
)
def test_guess_mime_type(url, slot, content_type, expected):
    assert guess_mime_type(url, slot, content_type) == expected


def test_decode_data_url():
    attachment = decode_data_url(data_url(b"hello", "image/png"))
    assert attachment.mime_type == "image/png"
    assert attachment.data == b"hello"


@pytest.mark.parametrize("ref", ["data:image/png,plain", "data:image/png;base64,@@@"])
def test_decode_data_url_rejects_malformed(ref):
    with pytest.raises(FetchError):
        decode_data_url(ref, "front-photo")


async def test_data_url_needs_no_network():
    def handler(request):
        raise AssertionError("network used for an embedded reference")

    attachment = await fetcher_for(handler).fetch(data_url(b"x", "video/mp4"), "front-video")
    assert attachment.data == b"x"


async def test_remote_fetch_uses_content_type():
    def handler(request):
        return httpx.Response(200, content=b"img", headers={"content-type": "image/png"})

    attachment = await fetcher_for(handler).fetch("https://cdn.test/photo", "front-photo")
    assert attachment.mime_type == "image/png"
    assert attachment.data == b"img"


async def test_remote_fetch_failure_status():
    def handler(request):
        return httpx.Response(403)

    with pytest.raises(FetchError) as exc_info:
        await fetcher_for(handler).fetch("https://cdn.test/photo.jpg", "side-photo")
    assert exc_info.value.status == 403
    assert exc_info.value.slot == "side-photo"


async def test_remote_fetch_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(FetchError, match="Timed out"):
        await fetcher_for(handler).fetch("https://cdn.test/photo.jpg", "side-photo")


def _refs(**overrides) -> dict[str, str]:
    refs = {slot: f"https://cdn.test/{slot}" for slot in REQUIRED_SLOTS}
    refs["inspiration-photo"] = "https://cdn.test/inspiration-photo"
    refs.update(overrides)
    return refs


async def test_fetch_all_returns_slot_order():
    def handler(request):
        return httpx.Response(200, content=request.url.path.encode())

    resolved = await fetcher_for(handler).fetch_all(_refs(), REQUIRED_SLOTS, OPTIONAL_SLOTS)

    assert list(resolved) == list(REQUIRED_SLOTS + OPTIONAL_SLOTS)
    assert resolved["front-video"].mime_type == "video/quicktime"


async def test_fetch_all_fails_when_a_required_ref_fails():
    def handler(request):
        if request.url.path == "/back-photo":
            return httpx.Response(404)
        return httpx.Response(200, content=b"ok")

    with pytest.raises(FetchError) as exc_info:
        await fetcher_for(handler).fetch_all(_refs(), REQUIRED_SLOTS, OPTIONAL_SLOTS)
    assert exc_info.value.slot == "back-photo"


async def test_fetch_all_drops_failed_optional_ref():
    def handler(request):
        if request.url.path == "/inspiration-photo":
            return httpx.Response(500)
        return httpx.Response(200, content=b"ok")

    resolved = await fetcher_for(handler).fetch_all(_refs(), REQUIRED_SLOTS, OPTIONAL_SLOTS)

    assert "inspiration-photo" not in resolved
    assert len(resolved) == len(REQUIRED_SLOTS)


async def test_fetch_all_rejects_missing_required_ref():
    def handler(request):
        return httpx.Response(200, content=b"ok")

    with pytest.raises(FetchError, match="front-video"):
        await fetcher_for(handler).fetch_all(_refs(**{"front-video": ""}), REQUIRED_SLOTS, OPTIONAL_SLOTS)


async def test_unparseable_url_is_fetch_error():
    def handler(request):
        raise AssertionError("request sent for an unparseable URL")

    with pytest.raises(FetchError, match="Invalid URL") as exc_info:
        await fetcher_for(handler).fetch("https://exa\x00mple.com/a.jpg", "side-photo")
    assert exc_info.value.slot == "side-photo"


async def test_fetch_all_drops_unparseable_optional_ref():
    def handler(request):
        return httpx.Response(200, content=b"ok")

    refs = _refs(**{"inspiration-photo": "https://exa\x00mple.com/wish.jpg"})
    resolved = await fetcher_for(handler).fetch_all(refs, REQUIRED_SLOTS, OPTIONAL_SLOTS)

    assert list(resolved) == list(REQUIRED_SLOTS)
