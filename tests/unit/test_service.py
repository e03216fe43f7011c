"""
Unit tests for ForgeService.

A recording fake stands in for APS so each test can assert exactly which
remote calls were made, and in what order.
"""

from datetime import timedelta
from typing import Optional

import pytest

from forge_viewer.core.errors import AuthenticationError, RemoteServiceError
from forge_viewer.core.models import (
    BucketDetails,
    BucketPolicy,
    Credential,
    ObjectDetails,
    ObjectPage,
    TranslationJob,
    TranslationStatus,
    encode_urn,
)
from forge_viewer.core.service import PAGE_SIZE, ForgeService, build_translation_payload
from forge_viewer.core.tokens import utc_now
from forge_viewer.infrastructure.aps.client import MockAPSClient


BUCKET = "abc-basic-app"
NEXT_URL = "https://developer.api.autodesk.com/oss/v2/buckets/abc-basic-app/objects?startAt={}&limit=64"


def make_object(key: str) -> ObjectDetails:
    return ObjectDetails(
        bucket_key=BUCKET,
        object_key=key,
        object_id=f"urn:adsk.objects:os.object:{BUCKET}/{key}",
    )


class FakeAPSClient:
    """
    Records every call; responses are configured per test.

    `pages` is served in order by list_objects. `bucket_error` is raised
    by get_bucket_details when set.
    """

    def __init__(self, pages: Optional[list[ObjectPage]] = None) -> None:
        self.pages = pages or [ObjectPage()]
        self.bucket_error: Optional[RemoteServiceError] = None
        self.manifest_error: Optional[RemoteServiceError] = None
        self.auth_error: Optional[AuthenticationError] = None
        self.calls: list[tuple] = []
        self.list_cursors: list[Optional[str]] = []
        self.created_buckets: list[tuple[str, BucketPolicy]] = []
        self.payloads: list[dict] = []
        self.uploaded: list[bytes] = []

    async def authenticate(self, scopes):
        self.calls.append(("authenticate",))
        if self.auth_error:
            raise self.auth_error
        return Credential("token", utc_now() + timedelta(hours=1))

    async def get_bucket_details(self, token, bucket_key):
        self.calls.append(("get_bucket_details", bucket_key))
        if self.bucket_error:
            raise self.bucket_error
        return BucketDetails(bucket_key=bucket_key)

    async def create_bucket(self, token, bucket_key, policy):
        self.calls.append(("create_bucket", bucket_key))
        self.created_buckets.append((bucket_key, policy))
        return BucketDetails(bucket_key=bucket_key, policy_key=policy.value)

    async def list_objects(self, token, bucket_key, limit, start_at=None):
        self.calls.append(("list_objects", bucket_key, limit))
        self.list_cursors.append(start_at)
        return self.pages[len(self.list_cursors) - 1]

    async def upload_object(self, token, bucket_key, object_name, content, content_length):
        self.calls.append(("upload_object", bucket_key, object_name, content_length))
        if isinstance(content, bytes):
            self.uploaded.append(content)
        else:
            self.uploaded.append(b"".join([chunk async for chunk in content]))
        return make_object(object_name)

    async def submit_translation(self, token, payload):
        self.calls.append(("submit_translation",))
        self.payloads.append(payload)
        return TranslationJob(result="created", urn=payload["input"]["urn"])

    async def get_manifest(self, token, urn):
        self.calls.append(("get_manifest", urn))
        if self.manifest_error:
            raise self.manifest_error
        return TranslationStatus(urn=urn, status="inprogress", progress="50% complete")

    async def aclose(self):
        self.calls.append(("aclose",))

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


def paginate(keys: list[str], page_size: int = PAGE_SIZE) -> list[ObjectPage]:
    """Split keys into pages; every page but the last links to the next."""
    pages = []
    for start in range(0, len(keys), page_size):
        chunk = keys[start:start + page_size]
        following = start + page_size
        next_url = NEXT_URL.format(keys[following]) if following < len(keys) else None
        pages.append(ObjectPage(items=[make_object(k) for k in chunk], next=next_url))
    return pages or [ObjectPage()]


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestForgeServiceConstruction:

    def test_requires_bucket_key(self):
        with pytest.raises(ValueError, match="bucket_key"):
            ForgeService(FakeAPSClient(), bucket_key="")

    def test_exposes_bucket_key(self):
        assert ForgeService(FakeAPSClient(), bucket_key=BUCKET).bucket_key == BUCKET


# ---------------------------------------------------------------------------
# Bucket Ensure
# ---------------------------------------------------------------------------

class TestEnsureBucketExists:

    @pytest.mark.asyncio
    async def test_existing_bucket_is_not_created(self):
        client = FakeAPSClient()
        service = ForgeService(client, bucket_key=BUCKET)

        await service.ensure_bucket_exists()

        assert client.count("create_bucket") == 0

    @pytest.mark.asyncio
    async def test_not_found_creates_bucket_once(self):
        client = FakeAPSClient()
        client.bucket_error = RemoteServiceError("Bucket not found", status_code=404)
        service = ForgeService(client, bucket_key=BUCKET)

        await service.ensure_bucket_exists()

        assert client.created_buckets == [(BUCKET, BucketPolicy.TEMPORARY)]
        names = [call[0] for call in client.calls]
        assert names.index("create_bucket") > names.index("get_bucket_details")

    @pytest.mark.parametrize("status_code", [400, 401, 403, 409, 500, None])
    @pytest.mark.asyncio
    async def test_other_errors_surface_without_create(self, status_code):
        client = FakeAPSClient()
        client.bucket_error = RemoteServiceError("nope", status_code=status_code)
        service = ForgeService(client, bucket_key=BUCKET)

        with pytest.raises(RemoteServiceError) as exc_info:
            await service.ensure_bucket_exists()

        assert exc_info.value is client.bucket_error
        assert client.count("create_bucket") == 0

    @pytest.mark.asyncio
    async def test_explicit_bucket_key(self):
        client = FakeAPSClient()
        client.bucket_error = RemoteServiceError("Bucket not found", status_code=404)
        service = ForgeService(client, bucket_key=BUCKET)

        await service.ensure_bucket_exists("other-bucket")

        assert client.created_buckets[0][0] == "other-bucket"


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

class TestListObjects:

    @pytest.mark.asyncio
    async def test_single_page(self):
        client = FakeAPSClient(paginate(["a.rvt", "b.dwg"]))
        service = ForgeService(client, bucket_key=BUCKET)

        objects = await service.list_objects()

        assert [o.name for o in objects] == ["a.rvt", "b.dwg"]
        assert client.list_cursors == [None]

    @pytest.mark.asyncio
    async def test_seventy_objects_take_two_requests(self):
        keys = [f"model-{i:03d}.rvt" for i in range(70)]
        client = FakeAPSClient(paginate(keys))
        service = ForgeService(client, bucket_key=BUCKET)

        objects = await service.list_objects()

        assert len(objects) == 70
        assert [o.name for o in objects] == keys
        assert client.count("list_objects") == 2
        assert client.list_cursors == [None, "model-064.rvt"]

    @pytest.mark.parametrize("page_count", [1, 2, 3, 5])
    @pytest.mark.asyncio
    async def test_n_pages_take_n_requests(self, page_count):
        pages = [
            ObjectPage(
                items=[make_object(f"p{p}-{i}") for i in range(3)],
                next=NEXT_URL.format(f"p{p + 1}-0") if p < page_count - 1 else None,
            )
            for p in range(page_count)
        ]
        client = FakeAPSClient(pages)
        service = ForgeService(client, bucket_key=BUCKET)

        objects = await service.list_objects()

        expected = [f"p{p}-{i}" for p in range(page_count) for i in range(3)]
        assert [o.name for o in objects] == expected
        assert client.count("list_objects") == page_count

    @pytest.mark.asyncio
    async def test_uses_fixed_page_size(self):
        client = FakeAPSClient()
        service = ForgeService(client, bucket_key=BUCKET)

        await service.list_objects()

        assert ("list_objects", BUCKET, 64) in client.calls

    @pytest.mark.asyncio
    async def test_summaries_carry_encoded_urn(self):
        client = FakeAPSClient(paginate(["a.rvt"]))
        service = ForgeService(client, bucket_key=BUCKET)

        objects = await service.list_objects()

        assert objects[0].urn == encode_urn(f"urn:adsk.objects:os.object:{BUCKET}/a.rvt")
        assert not objects[0].urn.endswith("=")

    @pytest.mark.asyncio
    async def test_bucket_ensured_before_listing(self):
        client = FakeAPSClient()
        client.bucket_error = RemoteServiceError("Bucket not found", status_code=404)
        service = ForgeService(client, bucket_key=BUCKET)

        objects = await service.list_objects()

        assert objects == []
        names = [call[0] for call in client.calls]
        assert names.index("create_bucket") < names.index("list_objects")

    @pytest.mark.asyncio
    async def test_token_fetched_once_for_whole_listing(self):
        keys = [f"m{i}" for i in range(200)]
        client = FakeAPSClient(paginate(keys))
        service = ForgeService(client, bucket_key=BUCKET)

        await service.list_objects()

        assert client.count("authenticate") == 1


# ---------------------------------------------------------------------------
# Upload and Translate
# ---------------------------------------------------------------------------

class TestUploadModel:

    @pytest.mark.asyncio
    async def test_upload_streams_content(self):
        client = FakeAPSClient()
        service = ForgeService(client, bucket_key=BUCKET)

        async def chunks():
            yield b"abc"
            yield b"def"

        details = await service.upload_model("house.rvt", chunks(), 6)

        assert details.object_key == "house.rvt"
        assert client.uploaded == [b"abcdef"]
        assert ("upload_object", BUCKET, "house.rvt", 6) in client.calls

    @pytest.mark.asyncio
    async def test_upload_ensures_bucket_first(self):
        client = FakeAPSClient()
        client.bucket_error = RemoteServiceError("Bucket not found", status_code=404)
        service = ForgeService(client, bucket_key=BUCKET)

        await service.upload_model("house.rvt", b"data", 4)

        names = [call[0] for call in client.calls]
        assert names.index("create_bucket") < names.index("upload_object")

    @pytest.mark.asyncio
    async def test_upload_rejects_empty_name(self):
        service = ForgeService(FakeAPSClient(), bucket_key=BUCKET)

        with pytest.raises(ValueError, match="object_name"):
            await service.upload_model("", b"data", 4)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", [".", ".."])
    async def test_upload_rejects_dot_segment_names(self, name):
        """Such names would be collapsed out of the object URL."""
        client = FakeAPSClient()
        service = ForgeService(client, bucket_key=BUCKET)

        with pytest.raises(ValueError, match="object_name"):
            await service.upload_model(name, b"data", 4)

        assert client.calls == []

    @pytest.mark.asyncio
    async def test_upload_rejects_negative_length(self):
        service = ForgeService(FakeAPSClient(), bucket_key=BUCKET)

        with pytest.raises(ValueError, match="negative"):
            await service.upload_model("a.rvt", b"", -1)


class TestTranslateModel:

    OBJECT_ID = f"urn:adsk.objects:os.object:{BUCKET}/house.zip"

    def test_payload_requests_svf_with_2d_and_3d_views(self):
        payload = build_translation_payload(self.OBJECT_ID)

        assert payload["input"] == {"urn": encode_urn(self.OBJECT_ID)}
        assert payload["output"]["formats"] == [{"type": "svf", "views": ["2d", "3d"]}]

    def test_payload_views_are_unique(self):
        views = build_translation_payload(self.OBJECT_ID)["output"]["formats"][0]["views"]
        assert len(views) == len(set(views))

    def test_payload_for_zip_sets_root_filename(self):
        payload = build_translation_payload(self.OBJECT_ID, root_filename="main.rvt")

        assert payload["input"]["rootFilename"] == "main.rvt"
        assert payload["input"]["compressedUrn"] is True

    def test_empty_root_filename_is_ignored(self):
        payload = build_translation_payload(self.OBJECT_ID, root_filename="")

        assert "rootFilename" not in payload["input"]
        assert "compressedUrn" not in payload["input"]

    @pytest.mark.asyncio
    async def test_translate_submits_job(self):
        client = FakeAPSClient()
        service = ForgeService(client, bucket_key=BUCKET)

        job = await service.translate_model(self.OBJECT_ID, "main.rvt")

        assert job.urn == encode_urn(self.OBJECT_ID)
        assert client.payloads[0]["input"]["rootFilename"] == "main.rvt"

    @pytest.mark.asyncio
    async def test_translate_errors_propagate(self):
        client = FakeAPSClient()
        service = ForgeService(client, bucket_key=BUCKET)
        error = RemoteServiceError("Unsupported format", status_code=400)

        async def failing(token, payload):
            raise error

        client.submit_translation = failing

        with pytest.raises(RemoteServiceError) as exc_info:
            await service.translate_model(self.OBJECT_ID)

        assert exc_info.value is error


class TestTranslationStatus:

    @pytest.mark.asyncio
    async def test_status_from_manifest(self):
        service = ForgeService(FakeAPSClient(), bucket_key=BUCKET)

        status = await service.get_translation_status("dXJu")

        assert status.status == "inprogress"

    @pytest.mark.asyncio
    async def test_missing_manifest_is_not_available(self):
        client = FakeAPSClient()
        client.manifest_error = RemoteServiceError("not found", status_code=404)
        service = ForgeService(client, bucket_key=BUCKET)

        status = await service.get_translation_status("dXJu")

        assert status.status == "n/a"

    @pytest.mark.asyncio
    async def test_other_manifest_errors_propagate(self):
        client = FakeAPSClient()
        client.manifest_error = RemoteServiceError("forbidden", status_code=403)
        service = ForgeService(client, bucket_key=BUCKET)

        with pytest.raises(RemoteServiceError):
            await service.get_translation_status("dXJu")


class TestAuthenticationFailures:

    @pytest.mark.asyncio
    async def test_listing_surfaces_authentication_error(self):
        client = FakeAPSClient()
        client.auth_error = AuthenticationError("invalid client", status_code=401)
        service = ForgeService(client, bucket_key=BUCKET)

        with pytest.raises(AuthenticationError):
            await service.list_objects()

        assert client.count("authenticate") == 1
        assert client.count("list_objects") == 0


# ---------------------------------------------------------------------------
# End to end against the in-memory APS
# ---------------------------------------------------------------------------

class CountingMockClient(MockAPSClient):
    def __init__(self) -> None:
        super().__init__()
        self.list_requests = 0

    async def list_objects(self, token, bucket_key, limit, start_at=None):
        self.list_requests += 1
        return await super().list_objects(token, bucket_key, limit, start_at)


class TestMockEndToEnd:

    @pytest.mark.asyncio
    async def test_upload_seventy_then_list(self):
        client = CountingMockClient()
        service = ForgeService(client, bucket_key=BUCKET)
        names = [f"model {i:02d}.rvt" for i in range(70)]
        for name in names:
            await service.upload_model(name, b"x", 1)
        client.list_requests = 0

        objects = await service.list_objects()

        assert [o.name for o in objects] == names
        assert client.list_requests == 2
        assert client.tokens_issued == 1

    @pytest.mark.asyncio
    async def test_upload_translate_status(self):
        client = MockAPSClient()
        service = ForgeService(client, bucket_key=BUCKET)

        details = await service.upload_model("house.rvt", b"data", 4)
        job = await service.translate_model(details.object_id)
        status = await service.get_translation_status(job.urn)

        assert job.urn == details.urn
        assert status.status == "success"
