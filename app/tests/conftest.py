from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import get_verification_service
from app.config.settings import settings
from app.main import app
from app.services.descriptor_store import InMemoryDescriptorStore
from app.services.verification import FaceVerificationService
from app.tests.factories import StubExtractor


@pytest.fixture
def extractor() -> StubExtractor:
    return StubExtractor()


@pytest.fixture
def store() -> InMemoryDescriptorStore:
    return InMemoryDescriptorStore()


@pytest.fixture
def service(store, extractor) -> Iterator[FaceVerificationService]:
    svc = FaceVerificationService(store=store, extractor=extractor, threshold=0.6)
    yield svc
    svc.close()


@pytest.fixture
def client(service) -> Iterator[TestClient]:
    token = settings.API_TOKEN
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    app.dependency_overrides = {get_verification_service: lambda: service}
    with TestClient(app, headers=headers) as c:
        yield c
    app.dependency_overrides = {}
