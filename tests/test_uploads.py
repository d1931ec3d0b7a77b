import asyncio

import pytest

from conftest import BLOB_BASE, ORIGIN, FakeBlobStore, FakeStripeClient, FakeStylizer, make_settings
from storefront.checkout import CheckoutBuilder
from storefront.errors import ArtifactStoreError, ConfigurationError, StylizationError, ValidationError
from storefront.uploads import UploadOrchestrator, is_image

PHOTO = b"\xff\xd8\xff photo bytes"


@pytest.mark.parametrize("content_type,expected", [
    ("image/jpeg", True),
    ("image/png", True),
    ("text/plain", False),
    ("", False),
    (None, False),
])
def test_is_image(content_type, expected):
    assert is_image(content_type) is expected


class TestPreview:
    def test_stylizes_photo(self, orchestrator, stylizer):
        styled = asyncio.run(orchestrator.preview(PHOTO, "image/jpeg"))

        assert styled.data == b"styled-" + PHOTO
        assert styled.mime_type == "image/png"
        assert stylizer.calls == [(PHOTO, "image/jpeg")]

    def test_no_image(self, orchestrator, stylizer):
        with pytest.raises(ValidationError, match="No image provided"):
            asyncio.run(orchestrator.preview(None, None))
        assert stylizer.calls == []

    def test_not_an_image(self, orchestrator, stylizer):
        with pytest.raises(ValidationError, match="File must be an image"):
            asyncio.run(orchestrator.preview(b"hello", "text/plain"))
        assert stylizer.calls == []


class TestUploadImages:
    def test_pair_lands_in_one_temp_folder(self, orchestrator, blob_store):
        result = asyncio.run(orchestrator.upload_images(PHOTO, "image/jpeg", b"styled", "image/png"))

        paths = sorted(path for path, _, _ in blob_store.writes)
        assert len(paths) == 2
        folder = paths[0].rsplit("/", 1)[0]
        assert folder.startswith("temp/")
        assert paths == [f"{folder}/original.jpeg", f"{folder}/processed.png"]
        assert result.to_response() == {
            "success": True,
            "originalUrl": f"{BLOB_BASE}/{folder}/original.jpeg",
            "processedUrl": f"{BLOB_BASE}/{folder}/processed.png",
        }

    def test_both_files_required(self, orchestrator, blob_store):
        with pytest.raises(ValidationError, match="Both original and processed images are required"):
            asyncio.run(orchestrator.upload_images(PHOTO, "image/jpeg", None, None))
        assert blob_store.writes == []

    def test_both_files_must_be_images(self, orchestrator, blob_store):
        with pytest.raises(ValidationError, match="Both files must be images"):
            asyncio.run(orchestrator.upload_images(PHOTO, "image/jpeg", b"text", "text/plain"))
        assert blob_store.writes == []

    def test_blob_token_missing(self, stylizer, checkout_builder):
        settings = make_settings(blob_read_write_token="")
        blob_store = FakeBlobStore(settings)
        orchestrator = UploadOrchestrator(settings, blob_store, stylizer, checkout_builder)

        with pytest.raises(ConfigurationError):
            asyncio.run(orchestrator.upload_images(PHOTO, "image/jpeg", b"styled", "image/png"))
        assert blob_store.writes == []


class TestStartCustomOrder:
    def test_stylize_store_then_checkout(self, orchestrator, stylizer, blob_store, stripe_client):
        writes_at_create = []
        stripe_client.before_create = lambda: writes_at_create.append(len(blob_store.writes))

        result = asyncio.run(orchestrator.start_custom_order(PHOTO, "image/jpeg", price="55", return_origin=ORIGIN))

        assert len(stylizer.calls) == 1
        assert writes_at_create == [2]
        assert len(stripe_client.created) == 1

        metadata = stripe_client.created[0]["metadata"]
        assert metadata["orderType"] == "custom-engraving"
        assert metadata["originalMimeType"] == "image/jpeg"
        assert metadata["processedMimeType"] == "image/png"
        assert metadata["originalUrl"] == result.original_url
        assert result.original_url.endswith("/original.jpeg")
        assert stripe_client.created[0]["line_items"][0]["price_data"]["unit_amount"] == 5500

        stored = {path: data for path, data, _ in blob_store.writes}
        assert stored[result.processed_url[len(BLOB_BASE) + 1:]] == b"styled-" + PHOTO

    def test_stylizer_failure_stops_everything(self, settings, blob_store, stripe_client, checkout_builder):
        stylizer = FakeStylizer(fail=True)
        orchestrator = UploadOrchestrator(settings, blob_store, stylizer, checkout_builder)

        with pytest.raises(StylizationError):
            asyncio.run(orchestrator.start_custom_order(PHOTO, "image/jpeg"))
        assert blob_store.writes == []
        assert stripe_client.created == []

    def test_store_failure_creates_no_session(self, settings, stylizer, stripe_client):
        blob_store = FakeBlobStore(settings, fail=True)
        builder = CheckoutBuilder(settings, stripe_client, blob_store)
        orchestrator = UploadOrchestrator(settings, blob_store, stylizer, builder)

        with pytest.raises(ArtifactStoreError, match="Failed to upload images"):
            asyncio.run(orchestrator.start_custom_order(PHOTO, "image/jpeg"))
        assert stripe_client.created == []

    def test_credentials_checked_before_stylizing(self, stylizer, blob_store):
        settings = make_settings(stripe_secret_key="")
        stripe_client = FakeStripeClient(settings)
        builder = CheckoutBuilder(settings, stripe_client, blob_store)
        orchestrator = UploadOrchestrator(settings, blob_store, stylizer, builder)

        with pytest.raises(ConfigurationError):
            asyncio.run(orchestrator.start_custom_order(PHOTO, "image/jpeg"))
        assert stylizer.calls == []
