import io

import pytest
from PIL import Image as PILImage

from recipegen import create_app
from recipegen.extensions import db as _db


@pytest.fixture(scope="session")
def app():
    """Create application for testing."""
    app = create_app("testing")
    with app.app_context():
        _db.create_all()
        yield app
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    """Per-test database; services commit, so rows are deleted afterwards."""
    with app.app_context():
        yield _db
        _db.session.rollback()
        for table in reversed(_db.metadata.sorted_tables):
            _db.session.execute(table.delete())
        _db.session.commit()


@pytest.fixture
def admin_headers(app):
    return {
        "Authorization": f"Bearer {app.config['ADMIN_API_TOKEN']}",
        "X-Admin-Id": "reviewer-1",
    }


@pytest.fixture(scope="session")
def jpeg_bytes():
    buffer = io.BytesIO()
    PILImage.new("RGB", (64, 48), (200, 120, 40)).save(buffer, format="JPEG")
    return buffer.getvalue()


def concept_payload(name="Chicken Quinoa Bowl", **overrides):
    """One recipe as the text model returns it (camelCase JSON)."""
    payload = {
        "name": name,
        "description": "Grilled chicken over quinoa with greens",
        "mealTypes": ["lunch"],
        "dietaryTags": ["high-protein"],
        "mainIngredientTags": ["chicken"],
        "ingredients": [
            {"name": "chicken breast", "amount": 150, "unit": "g"},
            {"name": "quinoa", "amount": "80", "unit": "g"},
        ],
        "instructions": ["Cook the quinoa.", "Grill the chicken.", "Assemble."],
        "prepTimeMinutes": 10,
        "cookTimeMinutes": 20,
        "servings": 1,
        "nutrition": {"calories": 520, "protein": 35, "carbs": 50, "fat": 18},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def fake_model(monkeypatch, jpeg_bytes):
    """Replace Gemini and S3 with in-memory fakes.

    ``fake_model.concept_calls`` records every chunk sent to the text model;
    ``fake_model.uploads`` maps storage key to uploaded bytes.
    """

    class FakeModel:
        def __init__(self):
            self.concept_calls = []
            self.image_calls = []
            self.uploads = {}
            self.concept_side_effects = {}  # chunk number -> exception
            self.image_failures = set()  # recipe names

        def generate_concepts(self, chunk):
            self.concept_calls.append(chunk)
            error = self.concept_side_effects.get(chunk.number)
            if error is not None:
                raise error
            return [
                concept_payload(name=f"Recipe {chunk.start + i + 1}")
                for i in range(chunk.count)
            ]

        def generate_image(self, concept):
            self.image_calls.append(concept.name)
            if concept.name in self.image_failures:
                from recipegen.errors import TransientUpstreamError

                raise TransientUpstreamError("image backend timed out")
            return jpeg_bytes

        def upload(self, storage_key, data, content_type="image/jpeg", private=False):
            self.uploads[storage_key] = data
            return storage_key

    fake = FakeModel()
    monkeypatch.setattr(
        "recipegen.services.ai_service.generate_concepts", fake.generate_concepts
    )
    monkeypatch.setattr(
        "recipegen.services.ai_service.generate_image", fake.generate_image
    )
    monkeypatch.setattr("recipegen.services.storage_service.upload", fake.upload)
    return fake


@pytest.fixture
def make_payload():
    return concept_payload


@pytest.fixture
def make_concept():
    """Build a validated RecipeConcept with transient id ``recipe_id``."""
    from recipegen.schemas import RecipeConcept

    def _make(recipe_id=1, name=None, **overrides):
        data = concept_payload(name=name or f"Recipe {recipe_id}", **overrides)
        data.update({"recipeId": recipe_id, "sequence": recipe_id - 1})
        return RecipeConcept.model_validate(data)

    return _make
