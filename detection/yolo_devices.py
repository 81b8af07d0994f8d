# Electronic device detection via YOLOv8 (Ultralytics).
# Every object the model sees is returned; the feature extractor decides which
# labels count as disallowed devices.

import logging
from typing import List

from config import YOLO_CONFIDENCE, YOLO_MODEL
from models import ObjectDetection

logger = logging.getLogger(__name__)


def load_model(weights: str = YOLO_MODEL):
    """Load YOLO weights. Raises on failure so the retry helper can try again."""
    from ultralytics import YOLO
    model = YOLO(weights)
    logger.info("[YOLO] Loaded %s for device detection", weights)
    return model


def detect_objects(model, frame, confidence=None) -> List[ObjectDetection]:
    """Run the object detector on a BGR frame.

    Returns labelled boxes as (x, y, w, h). Inference errors are logged and
    yield no objects for this frame.
    """
    if model is None:
        return []

    conf_threshold = confidence if confidence is not None else YOLO_CONFIDENCE

    try:
        results = model(frame, conf=conf_threshold, verbose=False)
    except Exception as e:
        logger.error("[YOLO] Inference error: %s", e)
        return []

    detected = []
    for r in results:
        names = r.names if hasattr(r, 'names') else {}
        boxes = getattr(r, 'boxes', None)
        if boxes is None or boxes.data is None:
            continue

        for det in boxes.data:
            x1, y1, x2, y2, conf, cls_id = det.tolist()
            label = names.get(int(cls_id), str(int(cls_id)))
            detected.append(ObjectDetection(
                label=str(label).lower(),
                confidence=float(conf),
                bbox=(float(x1), float(y1), float(x2 - x1), float(y2 - y1)),
            ))
    return detected
