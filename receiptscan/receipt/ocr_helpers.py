"""Pure OCR transformation helpers: engine output -> normalized OcrLine tuples."""

from typing import Any

from receiptscan.domain.ocr import OcrLine, OcrToken

TESSERACT_CONFIDENCE_SCALE = 100.0
OCR_SERVICE_CONFIDENCE_SCALE = 1.0


def normalize_confidence(value: Any, scale: float = 1.0) -> float | None:
    """
    Map an engine-specific confidence to [0, 1].

    Returns None for values engines use to mark "no word" (Tesseract reports
    -1 for block/paragraph rows).
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number < 0:
        return None
    return max(0.0, min(1.0, number / scale))


def overall_confidence(lines: tuple[OcrLine, ...] | list[OcrLine]) -> float:
    """Token-weighted mean confidence across all lines (0.0 when empty)."""
    tokens = [token for line in lines for token in line.tokens]
    if not tokens:
        return 0.0
    return sum(token.confidence for token in tokens) / len(tokens)


def lines_from_tesseract_data(data: dict[str, list[Any]]) -> tuple[OcrLine, ...]:
    """
    Build OCR lines from a pytesseract ``image_to_data`` dictionary.

    Words are grouped by (page, block, paragraph, line) and kept in reading
    order. Confidences on the 0-100 scale are normalized to [0, 1].
    """
    texts = data.get("text", [])
    grouped: dict[tuple[int, int, int, int], list[OcrToken]] = {}

    for i, raw_text in enumerate(texts):
        text = str(raw_text or "").strip()
        if not text:
            continue
        confidence = normalize_confidence(data["conf"][i], TESSERACT_CONFIDENCE_SCALE)
        if confidence is None:
            continue
        key = (
            int(data.get("page_num", [1] * len(texts))[i]),
            int(data["block_num"][i]),
            int(data["par_num"][i]),
            int(data["line_num"][i]),
        )
        grouped.setdefault(key, []).append(OcrToken(text=text, confidence=confidence))

    # dicts keep insertion order, which is Tesseract's reading order
    return tuple(OcrLine(tokens=tuple(tokens)) for tokens in grouped.values())


def _boxes_overlap_y(det1: dict, det2: dict, min_overlap_ratio: float = 0.5) -> bool:
    """
    Check if two detection boxes overlap in Y-axis by at least min_overlap_ratio.

    More robust than center-distance comparison because tall boxes can
    overlap vertically even when their centers are far apart.
    """
    overlap_start = max(det1["y_min"], det2["y_min"])
    overlap_end = min(det1["y_max"], det2["y_max"])
    if overlap_start >= overlap_end:
        return False

    smaller_height = min(det1["y_max"] - det1["y_min"], det2["y_max"] - det2["y_min"])
    # Avoid division by zero for degenerate boxes
    if smaller_height <= 0:
        return False

    return (overlap_end - overlap_start) / smaller_height >= min_overlap_ratio


def _line_span(line: list[dict]) -> dict:
    return {"y_min": min(d["y_min"] for d in line), "y_max": max(d["y_max"] for d in line)}


def _group_detections_by_y_overlap(detections: list[dict], min_overlap_ratio: float = 0.5) -> list[list[dict]]:
    """Group detections into text lines, top to bottom, each sorted left to right."""
    lines: list[list[dict]] = []
    for det in sorted(detections, key=lambda d: (d["center_y"], d["min_x"])):
        for line in reversed(lines):
            if _boxes_overlap_y(det, _line_span(line), min_overlap_ratio):
                line.append(det)
                break
        else:
            lines.append([det])

    for line in lines:
        line.sort(key=lambda d: d["min_x"])
    lines.sort(key=lambda line: sum(d["center_y"] for d in line) / len(line))
    return lines


def lines_from_detections(detections: list[Any], min_confidence: float = 0.0) -> tuple[OcrLine, ...]:
    """
    Build OCR lines from OCR-service detections.

    Each detection is ``[bbox, [text, confidence]]`` where bbox is four
    ``[x, y]`` points and confidence is already on the [0, 1] scale.
    """
    detection_data = []
    for detection in detections:
        bbox, (text, raw_confidence) = detection
        confidence = normalize_confidence(raw_confidence, OCR_SERVICE_CONFIDENCE_SCALE)
        text = str(text).strip()
        if not text or confidence is None or confidence < min_confidence:
            continue

        y_coords = [point[1] for point in bbox]
        detection_data.append(
            {
                "text": text,
                "confidence": confidence,
                "center_y": sum(y_coords) / len(y_coords),
                "y_min": min(y_coords),
                "y_max": max(y_coords),
                "min_x": min(point[0] for point in bbox),
            }
        )

    return tuple(
        OcrLine(tokens=tuple(OcrToken(text=d["text"], confidence=d["confidence"]) for d in line))
        for line in _group_detections_by_y_overlap(detection_data)
    )
