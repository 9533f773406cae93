import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

import numpy as np
from fastapi.concurrency import run_in_threadpool

from app.core.descriptor import (
    DEFAULT_THRESHOLD,
    VerificationResult,
    as_descriptor,
    compare_descriptors,
)
from app.core.exceptions import (
    DescriptorLengthMismatch,
    FaceVerificationError,
    InternalError,
    NoFaceDetected,
    NoPayload,
    PersistenceError,
    ReferenceNotFound,
)
from app.core.extractor import DetectedFace, EmbeddingExtractor
from app.services.crop_store import CropStore
from app.services.descriptor_store import (
    DescriptorNotFoundError,
    DescriptorStore,
    DescriptorStoreError,
    ReferenceRecord,
)
from app.utils.image_payload import crop_box, decode_image_payload, encode_png
from app.utils.logger import log


@dataclass(frozen=True)
class EnrollmentOutcome:
    message: str
    enrolled_at: datetime
    descriptor_length: int
    crop_saved: bool


@dataclass(frozen=True)
class ReferenceStatus:
    enrolled: bool
    enrolled_at: Optional[datetime] = None
    descriptor_length: Optional[int] = None


class FaceVerificationService:
    """Enrolls the reference face and verifies new images against it.

    Image decoding and face extraction run on a dedicated thread pool so the
    event loop keeps serving other requests while a model is busy.
    """

    def __init__(
        self,
        store: DescriptorStore,
        extractor: EmbeddingExtractor,
        crop_store: Optional[CropStore] = None,
        threshold: float = DEFAULT_THRESHOLD,
        expected_dimension: Optional[int] = None,
        extractor_timeout: Optional[float] = 30.0,
        max_payload_bytes: Optional[int] = None,
        workers: int = 2,
    ):
        self.store = store
        self.extractor = extractor
        self.crop_store = crop_store
        self.threshold = threshold
        self.expected_dimension = expected_dimension
        self.extractor_timeout = extractor_timeout
        self.max_payload_bytes = max_payload_bytes
        self._executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="face-extractor"
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def _in_worker(self, func, *args):
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, func, *args)
        try:
            return await asyncio.wait_for(future, timeout=self.extractor_timeout)
        except asyncio.TimeoutError:
            log.err(f"Face analysis timed out after {self.extractor_timeout}s")
            raise InternalError("Face analysis timed out.")

    def _analyze(self, img: np.ndarray) -> Tuple[DetectedFace, np.ndarray]:
        face = self.extractor.extract_top_face(img)
        if face is None:
            log.warn("No face detected in image")
            raise NoFaceDetected()
        try:
            descriptor = as_descriptor(face.embedding)
        except ValueError as e:
            log.exception(e, "validating extracted descriptor")
            raise InternalError("Face embedding extraction failed.")
        return face, descriptor

    async def _decode(self, payload: str):
        return await self._in_worker(
            decode_image_payload, payload, self.max_payload_bytes
        )

    async def enroll(self, payload: Optional[str]) -> EnrollmentOutcome:
        """Make the face in ``payload`` the new reference, replacing any previous one."""
        if not payload:
            raise NoPayload()

        start_time = time.time()
        log.info("Starting face enrollment")
        try:
            _, img = await self._decode(payload)
            face, descriptor = await self._in_worker(self._analyze, img)
            if (
                self.expected_dimension is not None
                and len(descriptor) != self.expected_dimension
            ):
                raise DescriptorLengthMismatch(len(descriptor), self.expected_dimension)
        except FaceVerificationError:
            raise
        except Exception as e:
            log.exception(e, "face enrollment")
            raise InternalError("Error processing the reference image.")

        try:
            record = await run_in_threadpool(self.store.save, descriptor)
        except (DescriptorStoreError, OSError) as e:
            log.exception(e, "saving reference descriptor")
            raise PersistenceError()

        crop_saved = await self._save_crop(img, face, record)

        log.info(f"Reference descriptor saved with length: {len(descriptor)}")
        log.perf(
            "face_enrollment",
            time.time() - start_time,
            descriptor_length=len(descriptor),
            crop_saved=crop_saved,
        )
        return EnrollmentOutcome(
            message="Face enrolled and descriptor saved successfully.",
            enrolled_at=record.enrolled_at,
            descriptor_length=len(descriptor),
            crop_saved=crop_saved,
        )

    @staticmethod
    def _encode_crop(img: np.ndarray, face: DetectedFace) -> bytes:
        return encode_png(crop_box(img, face.box))

    async def _save_crop(
        self, img: np.ndarray, face: DetectedFace, record: ReferenceRecord
    ) -> bool:
        """Store the cropped reference face. Failures are logged, never raised."""
        if self.crop_store is None:
            return False
        try:
            crop_png = await self._in_worker(self._encode_crop, img, face)
            location = await run_in_threadpool(
                self.crop_store.save_crop, crop_png, record.enrolled_at
            )
            attached = await run_in_threadpool(
                self.store.attach_crop, record.enrolled_at, location
            )
            if attached is None:
                log.warn("Reference was replaced while its crop was saved, discarding crop")
                await run_in_threadpool(self.crop_store.discard, location)
                return False
        except Exception as e:
            log.err(f"Failed to save reference crop: {e}")
            log.warn("Enrollment will continue without a reference crop")
            return False
        log.bug(f"Reference crop saved to {location}")
        return True

    async def verify(self, payload: Optional[str]) -> VerificationResult:
        """Compare the face in ``payload`` against the enrolled reference."""
        if not payload:
            raise NoPayload()

        start_time = time.time()
        try:
            record = await run_in_threadpool(self.store.load)
        except DescriptorNotFoundError:
            log.warn("Verification requested before any enrollment")
            raise ReferenceNotFound()
        except DescriptorStoreError as e:
            log.exception(e, "loading reference descriptor")
            raise InternalError()

        try:
            _, img = await self._decode(payload)
            _, candidate = await self._in_worker(self._analyze, img)
        except FaceVerificationError:
            raise
        except Exception as e:
            log.exception(e, "face verification")
            raise InternalError()

        reference = record.descriptor
        log.bug(f"Reference descriptor length: {len(reference)}")
        log.bug(f"Input descriptor length: {len(candidate)}")

        try:
            result = compare_descriptors(
                candidate,
                reference,
                threshold=self.threshold,
                expected_dimension=self.expected_dimension,
            )
        except DescriptorLengthMismatch:
            log.warn(
                f"Descriptor length mismatch: input {len(candidate)}, reference {len(reference)}"
            )
            raise

        log.perf(
            "face_verification",
            time.time() - start_time,
            match=result.match,
            distance=f"{result.distance:.4f}",
        )
        return result

    async def reference_status(self) -> ReferenceStatus:
        try:
            record = await run_in_threadpool(self.store.load)
        except DescriptorNotFoundError:
            return ReferenceStatus(enrolled=False)
        except DescriptorStoreError as e:
            log.exception(e, "loading reference descriptor")
            raise InternalError()
        return ReferenceStatus(
            enrolled=True,
            enrolled_at=record.enrolled_at,
            descriptor_length=len(record.descriptor),
        )
