"""
Tests for interactive mockup generation.
"""

import pytest

from conftest import EXPORT_BYTES
from proof_worker.exceptions import NotFoundError
from proof_worker.mockup_generation import MockupGenerator


@pytest.fixture
def generator(db, store, mockups_client, normalizer, settings):
    return MockupGenerator(db, store, mockups_client, normalizer, settings)


class TestMockupGenerator:
    def test_generate_stores_and_records(self, generator, db, store, settings, make_order):
        make_order("O1")

        mockup = generator.generate("O1-df0", "T", "S", created_by="user-1", customer_id="C-O1", order_id="O1",
                                    mockup_name="Front")

        assert mockup.storage_path.startswith("C-O1/")
        assert mockup.storage_path.endswith("-logo.png.jpg")
        assert mockup.filename == "mockup-logo.png.jpg"
        assert mockup.file_size == len(EXPORT_BYTES)
        assert store.objects[(settings.bucket_mockups, mockup.storage_path)] == EXPORT_BYTES
        assert store.content_types[(settings.bucket_mockups, mockup.storage_path)] == "image/jpeg"
        assert db.get_generated_mockups([mockup.id])[0].mockup_name == "Front"

    def test_generate_without_customer_uses_general_folder(self, generator, make_order):
        make_order("O1")

        mockup = generator.generate("O1-df0", "T", "S", created_by="user-1")

        assert mockup.storage_path.startswith("general/")

    def test_vector_artwork_is_converted(self, generator, make_order, rasterize_calls):
        make_order("O1", files=[("logo.svg", "image/svg+xml", "front")])

        generator.generate("O1-df0", "T", "S", created_by="user-1")

        assert len(rasterize_calls) == 1

    def test_unknown_design_file(self, generator):
        with pytest.raises(NotFoundError):
            generator.generate("missing", "T", "S", created_by="user-1")

    def test_signed_url(self, generator, make_order, settings):
        make_order("O1")
        mockup = generator.generate("O1-df0", "T", "S", created_by="user-1")

        assert generator.signed_url(mockup).startswith(f"https://storage.test/{settings.bucket_mockups}/")
