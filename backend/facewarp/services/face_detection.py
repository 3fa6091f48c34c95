"""Face detection service using MediaPipe."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import cv2
import numpy as np

from facewarp.models.types import DetectedFace, FaceBox
from facewarp.utils.image import ImageValidationError

logger = logging.getLogger(__name__)


class FaceDetectionUnavailableError(Exception):
    """Raised when the detection backend is not installed."""

    pass


@dataclass
class FaceDetectionResult:
    """Result of face detection."""

    faces: List[DetectedFace] = field(default_factory=list)
    width: int = 0
    height: int = 0

    @property
    def face_detected(self) -> bool:
        return len(self.faces) > 0

    @property
    def face_count(self) -> int:
        return len(self.faces)

    @property
    def primary(self) -> Optional[DetectedFace]:
        """The most confident face, if any."""
        if not self.faces:
            return None
        return max(self.faces, key=lambda face: face.confidence)


class FaceDetectionService:
    """Service for detecting faces using MediaPipe Face Detection."""

    def __init__(self, min_detection_confidence: float = 0.5):
        """Initialize MediaPipe Face Detection."""
        try:
            import mediapipe as mp
        except ImportError as e:
            raise FaceDetectionUnavailableError(
                "mediapipe is not installed; install the 'detection' extra"
            ) from e

        self.face_detection = mp.solutions.face_detection.FaceDetection(
            model_selection=1,  # Full-range model, faces up to ~5m
            min_detection_confidence=min_detection_confidence,
        )

    def detect(self, img: np.ndarray, require_face: bool = False) -> FaceDetectionResult:
        """
        Detect faces in an image.

        Args:
            img: RGBA or RGB image array
            require_face: If True, raises error when no face is found

        Returns:
            FaceDetectionResult with boxes in pixel coordinates

        Raises:
            ImageValidationError: If require_face is True and no face is found
        """
        h, w = img.shape[:2]
        rgb_img = cv2.cvtColor(img, cv2.COLOR_RGBA2RGB) if img.shape[2] == 4 else img
        results = self.face_detection.process(np.ascontiguousarray(rgb_img))

        faces: List[DetectedFace] = []
        for detection in results.detections or []:
            bbox = detection.location_data.relative_bounding_box
            # Clip the relative box to the image
            x0 = max(0.0, bbox.xmin) * w
            y0 = max(0.0, bbox.ymin) * h
            x1 = min(1.0, bbox.xmin + bbox.width) * w
            y1 = min(1.0, bbox.ymin + bbox.height) * h
            landmarks = [
                (kp.x * w, kp.y * h)
                for kp in detection.location_data.relative_keypoints
            ]
            faces.append(
                DetectedFace(
                    box=FaceBox(x=x0, y=y0, width=x1 - x0, height=y1 - y0),
                    confidence=float(detection.score[0]) if detection.score else 0.0,
                    landmarks=landmarks,
                )
            )

        if not faces and require_face:
            raise ImageValidationError(
                code="FACE_NOT_DETECTED",
                message="No face detected in the uploaded image",
            )

        logger.debug(f"Detected {len(faces)} face(s) in {w}x{h} image")
        return FaceDetectionResult(faces=faces, width=w, height=h)

    def close(self):
        """Release resources."""
        self.face_detection.close()


# Global instance for reuse
_face_detection_service: Optional[FaceDetectionService] = None


def get_face_detection_service() -> FaceDetectionService:
    """Get or create face detection service instance."""
    global _face_detection_service
    if _face_detection_service is None:
        _face_detection_service = FaceDetectionService()
    return _face_detection_service
