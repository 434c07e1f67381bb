"""Read workflow documents embedded in generated PNG files."""
from __future__ import annotations

from io import BytesIO
from os import PathLike
from typing import BinaryIO

from PIL import Image as PilImage
from PIL import UnidentifiedImageError

from ..errors import DocumentMalformedError, NoEmbeddedWorkflowError

WORKFLOW_KEY = "workflow"
PROMPT_KEY = "prompt"


def read_png_metadata(source: str | PathLike | BinaryIO | bytes) -> dict[str, str]:
    """Return the text chunks of a PNG image as a dict."""
    if isinstance(source, (bytes, bytearray)):
        source = BytesIO(source)
    try:
        with PilImage.open(source) as img:
            img.load()
            text = getattr(img, "text", None)
            if text is None:
                text = {k: v for k, v in img.info.items() if isinstance(v, str)}
            return dict(text)
    except FileNotFoundError:
        raise
    except (UnidentifiedImageError, OSError) as e:
        raise DocumentMalformedError(f"Cannot read image metadata: {e}") from e


def extract_workflow(source: str | PathLike | BinaryIO | bytes, key: str = WORKFLOW_KEY) -> str:
    """Return the embedded workflow JSON text, or raise NoEmbeddedWorkflowError."""
    metadata = read_png_metadata(source)
    workflow = metadata.get(key)
    if not workflow:
        raise NoEmbeddedWorkflowError(key)
    return workflow
