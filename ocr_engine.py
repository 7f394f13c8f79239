"""
Image to text for uploaded brokerage screenshots.

Uses easyocr on a lightly preprocessed Pillow image. easyocr returns one
fragment per detected text box; fragments are regrouped into visual rows
so a holdings row ("SCHD Arca 27.50 +0.03 10 0.30") comes back as one line.
"""

import io
import logging
import os
import threading

import numpy as np
from PIL import Image, ImageOps

from errors import OCRError

try:
    import easyocr
    OCR_AVAILABLE = True
except ImportError:
    OCR_AVAILABLE = False

logger = logging.getLogger('portfolio_tracker.ocr')

ALLOWED_IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.bmp', '.tif', '.tiff'}

# Images smaller than this on their longest side are upscaled before OCR
MIN_OCR_DIMENSION = 1200


def is_allowed_image(filename):
    """Check the upload's extension against the supported image formats."""
    if not filename:
        return False
    return os.path.splitext(filename.lower())[1] in ALLOWED_IMAGE_EXTENSIONS


def preprocess_image(image):
    """Grayscale, and upscale small screenshots so digits survive OCR."""
    img = ImageOps.grayscale(image)
    width, height = img.size
    if max(width, height) < MIN_OCR_DIMENSION:
        img = img.resize((int(width * 1.5), int(height * 1.5)))
    return img


def group_rows(results):
    """
    Join easyocr (bbox, text, confidence) results into lines of text.

    Boxes whose vertical centres fall within half a box height of the
    current row are treated as the same row; rows are ordered top to
    bottom and fragments left to right.
    """
    boxes = []
    for bbox, text, _confidence in results:
        text = str(text).strip()
        if not text:
            continue
        ys = [point[1] for point in bbox]
        xs = [point[0] for point in bbox]
        top, bottom = min(ys), max(ys)
        boxes.append({
            'text': text,
            'left': min(xs),
            'center': (top + bottom) / 2,
            'height': max(bottom - top, 1),
        })

    rows = []
    for box in sorted(boxes, key=lambda b: b['center']):
        if rows:
            row = rows[-1]
            if abs(box['center'] - row['center']) <= row['height'] / 2:
                row['boxes'].append(box)
                continue
        rows.append({'center': box['center'], 'height': box['height'], 'boxes': [box]})

    lines = []
    for row in rows:
        fragments = sorted(row['boxes'], key=lambda b: b['left'])
        lines.append(' '.join(b['text'] for b in fragments))
    return '\n'.join(lines)


class OCREngine:
    """Lazily initialised easyocr reader (it is slow to load)."""

    def __init__(self, languages=('en',), gpu=False):
        self.languages = list(languages) or ['en']
        self.gpu = gpu
        self._reader = None
        self._lock = threading.Lock()

    def _get_reader(self):
        if self._reader is None:
            with self._lock:
                if self._reader is None:
                    if not OCR_AVAILABLE:
                        raise OCRError('OCR not available. Please install easyocr.')
                    logger.info("Loading easyocr reader for %s", ', '.join(self.languages))
                    try:
                        self._reader = easyocr.Reader(self.languages, gpu=self.gpu)
                    except Exception as e:
                        logger.exception("Could not load easyocr reader")
                        raise OCRError(f'Could not load OCR engine: {e}') from e
        return self._reader

    def recognize_text(self, content):
        """Return the text found in image bytes. Raises OCRError on failure."""
        if not content:
            raise OCRError('Empty image')

        try:
            image = Image.open(io.BytesIO(content))
            # Convert to RGB if necessary (palette / alpha images)
            if image.mode != 'RGB':
                image = image.convert('RGB')
            image = preprocess_image(image)
        except Exception as e:
            # Includes Pillow's DecompressionBombError for oversized images
            raise OCRError(f'Unreadable image: {e}') from e

        reader = self._get_reader()
        try:
            results = reader.readtext(np.array(image))
        except Exception as e:
            logger.exception("OCR engine failed")
            raise OCRError(f'OCR engine failed: {e}') from e

        text = group_rows(results)
        logger.info("OCR extracted %d characters in %d lines", len(text), text.count('\n') + 1 if text else 0)
        return text
