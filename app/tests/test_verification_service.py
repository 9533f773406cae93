import asyncio
import threading
import time
from unittest.mock import MagicMock

import cv2
import numpy as np
import pytest

from app.core.exceptions import (
    DescriptorLengthMismatch,
    ImageDecodeError,
    InternalError,
    NoFaceDetected,
    NoPayload,
    PersistenceError,
    ReferenceNotFound,
)
from app.services.crop_store import LocalCropStore
from app.services.descriptor_store import (
    DescriptorNotFoundError,
    DescriptorStoreError,
    FileDescriptorStore,
)
from app.services.verification import FaceVerificationService
from app.tests.factories import StubExtractor, make_payload


def run(coro):
    return asyncio.run(coro)


def test_self_match(service):
    run(service.enroll(make_payload(50)))
    result = run(service.verify(make_payload(50)))
    assert result.match is True
    assert result.distance < 0.1
    assert result.similarity == pytest.approx(1.0 - result.distance)
    assert result.threshold == 0.6


def test_enroll_outcome(service):
    outcome = run(service.enroll(make_payload(50, data_url=True)))
    assert outcome.descriptor_length == 128
    assert outcome.crop_saved is False
    assert "saved" in outcome.message


def test_verify_before_enroll_is_reference_not_found(service, extractor):
    with pytest.raises(ReferenceNotFound):
        run(service.verify(make_payload(50)))
    # the reference is checked before any image work
    assert extractor.calls == 0


@pytest.mark.parametrize("payload", [None, ""])
def test_missing_payload(service, payload):
    with pytest.raises(NoPayload):
        run(service.enroll(payload))
    with pytest.raises(NoPayload):
        run(service.verify(payload))


def test_no_face_on_enroll(service, store):
    with pytest.raises(NoFaceDetected):
        run(service.enroll(make_payload(0)))
    assert run(service.reference_status()).enrolled is False


def test_no_face_on_verify(service):
    run(service.enroll(make_payload(50)))
    with pytest.raises(NoFaceDetected):
        run(service.verify(make_payload(0)))


def test_malformed_payload_is_decode_error_not_detection_failure(service, extractor):
    run(service.enroll(make_payload(50)))
    calls = extractor.calls
    with pytest.raises(ImageDecodeError):
        run(service.verify("%%% not an image %%%"))
    assert extractor.calls == calls


def test_threshold_boundary_match(service):
    run(service.enroll(make_payload(10)))
    result = run(service.verify(make_payload(55)))
    assert result.match is True
    assert f"{result.distance:.4f}" == "0.4500"
    assert f"{result.similarity:.4f}" == "0.5500"


def test_threshold_boundary_no_match(service):
    run(service.enroll(make_payload(10)))
    result = run(service.verify(make_payload(82)))
    assert result.match is False
    assert f"{result.distance:.4f}" == "0.7200"
    assert f"{result.similarity:.4f}" == "0.2800"


def test_dimension_guard(store):
    store.save(np.zeros(512, dtype=np.float32))
    svc = FaceVerificationService(store=store, extractor=StubExtractor(dimension=128))
    try:
        with pytest.raises(DescriptorLengthMismatch) as exc_info:
            run(svc.verify(make_payload(50)))
    finally:
        svc.close()
    assert exc_info.value.input_length == 128
    assert exc_info.value.reference_length == 512


def test_pinned_dimension_rejects_enrollment(store):
    svc = FaceVerificationService(
        store=store, extractor=StubExtractor(dimension=64), expected_dimension=128
    )
    try:
        with pytest.raises(DescriptorLengthMismatch):
            run(svc.enroll(make_payload(50)))
    finally:
        svc.close()


def test_verify_does_not_mutate_reference(service, store):
    run(service.enroll(make_payload(30)))
    before = store.load()
    run(service.verify(make_payload(90)))
    after = store.load()
    assert after is before


def test_reenroll_overwrites_reference(service):
    run(service.enroll(make_payload(10)))
    run(service.enroll(make_payload(90)))
    assert run(service.verify(make_payload(90))).match is True
    assert run(service.verify(make_payload(10))).match is False


def test_persistence_failure_is_surfaced(extractor):
    store = MagicMock()
    store.save.side_effect = DescriptorStoreError("disk full")
    svc = FaceVerificationService(store=store, extractor=extractor)
    try:
        with pytest.raises(PersistenceError) as exc_info:
            run(svc.enroll(make_payload(50)))
    finally:
        svc.close()
    assert isinstance(exc_info.value, InternalError)
    assert exc_info.value.status_code == 500


def test_store_read_failure_is_internal_error(extractor):
    store = MagicMock()
    store.load.side_effect = DescriptorStoreError("unreadable")
    svc = FaceVerificationService(store=store, extractor=extractor)
    try:
        with pytest.raises(InternalError):
            run(svc.verify(make_payload(50)))
    finally:
        svc.close()


def test_crop_is_saved_and_attached(tmp_path, extractor):
    store = FileDescriptorStore(str(tmp_path))
    crop_store = LocalCropStore(str(tmp_path))
    svc = FaceVerificationService(store=store, extractor=extractor, crop_store=crop_store)
    try:
        outcome = run(svc.enroll(make_payload(50)))
    finally:
        svc.close()
    assert outcome.crop_saved is True
    expected = crop_store.path_for(outcome.enrolled_at)
    assert expected.exists()
    assert store.load().crop_path == str(expected)


class GatedCropStore(LocalCropStore):
    """Holds the first crop write until ``release`` is set."""

    def __init__(self, directory: str):
        super().__init__(directory)
        self.entered = threading.Event()
        self.release = threading.Event()
        self._held = False

    def save_crop(self, image_data, enrolled_at):
        if not self._held:
            self._held = True
            self.entered.set()
            self.release.wait(timeout=5)
        return super().save_crop(image_data, enrolled_at)


def test_slow_crop_of_replaced_enrollment_is_discarded(tmp_path, extractor):
    store = FileDescriptorStore(str(tmp_path))
    crop_store = GatedCropStore(str(tmp_path))
    svc = FaceVerificationService(store=store, extractor=extractor, crop_store=crop_store)

    async def scenario():
        first = asyncio.create_task(svc.enroll(make_payload(10)))
        assert await asyncio.to_thread(crop_store.entered.wait, 5)
        second = await svc.enroll(make_payload(90))
        crop_store.release.set()
        return await first, second

    try:
        first, second = run(scenario())
    finally:
        crop_store.release.set()
        svc.close()

    assert first.crop_saved is False
    assert second.crop_saved is True
    record = store.load()
    assert record.descriptor[0] == pytest.approx(0.9)
    assert record.crop_path == str(crop_store.path_for(second.enrolled_at))
    crop = cv2.imread(record.crop_path)
    assert int(round(crop[..., 0].mean())) == 90
    assert not crop_store.path_for(first.enrolled_at).exists()


def test_crop_failure_does_not_fail_enrollment(store, extractor):
    crop_store = MagicMock()
    crop_store.save_crop.side_effect = RuntimeError("bucket unavailable")
    svc = FaceVerificationService(store=store, extractor=extractor, crop_store=crop_store)
    try:
        outcome = run(svc.enroll(make_payload(50)))
    finally:
        svc.close()
    assert outcome.crop_saved is False
    assert store.load().crop_path is None
    assert len(store.load().descriptor) == 128


def test_non_object_record_is_internal_error(tmp_path, extractor):
    (tmp_path / "descriptor.json").write_text("5")
    store = FileDescriptorStore(str(tmp_path))
    svc = FaceVerificationService(store=store, extractor=extractor)
    try:
        with pytest.raises(InternalError):
            run(svc.verify(make_payload(50)))
    finally:
        svc.close()


def test_extractor_failure_is_internal_error(store):
    extractor = MagicMock()
    extractor.extract_top_face.side_effect = RuntimeError("model crashed")
    svc = FaceVerificationService(store=store, extractor=extractor)
    try:
        with pytest.raises(InternalError):
            run(svc.enroll(make_payload(50)))
    finally:
        svc.close()


def test_extractor_timeout_is_internal_error(store):
    class SlowExtractor(StubExtractor):
        def extract_top_face(self, img):
            time.sleep(1.0)
            return super().extract_top_face(img)

    svc = FaceVerificationService(
        store=store, extractor=SlowExtractor(), extractor_timeout=0.05
    )
    try:
        with pytest.raises(InternalError):
            run(svc.enroll(make_payload(50)))
    finally:
        svc.close()
    with pytest.raises(DescriptorNotFoundError):
        store.load()


def test_concurrent_enrollment_keeps_one_complete_descriptor(service, store):
    blues = [10, 40, 70, 100]

    async def enroll_all():
        await asyncio.gather(*(service.enroll(make_payload(b)) for b in blues))

    run(enroll_all())
    final = store.load().descriptor
    assert len(final) == 128
    assert any(final[0] == np.float32(b / 100.0) for b in blues)
    assert np.count_nonzero(final[1:]) == 0


def test_reference_status(service):
    status = run(service.reference_status())
    assert status.enrolled is False
    run(service.enroll(make_payload(50)))
    status = run(service.reference_status())
    assert status.enrolled is True
    assert status.descriptor_length == 128
    assert status.enrolled_at is not None


