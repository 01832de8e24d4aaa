"""Classify one image file and print ``{"category", "confidence"}`` as JSON.

Run by :class:`~imageedit.ml.classifier.SubprocessClassifierBackend`::

    python -m imageedit.ml.classify_image --model model.onnx photo.png
"""

from __future__ import annotations

import argparse
import json
import sys

import numpy as np
from onnxruntime import InferenceSession
from PIL import Image

from imageedit.ml.classifier import result_from_logits
from imageedit.ml.preprocessing import image_to_tensor


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Classify a clothing image into one of five categories.")
    parser.add_argument("--model", required=True, help="Path to the ONNX model")
    parser.add_argument("image", help="Path to the image file")
    args = parser.parse_args(argv)

    session = InferenceSession(args.model, providers=["CPUExecutionProvider"])
    with Image.open(args.image) as image:
        tensor = image_to_tensor(image)

    outputs = session.run(None, {session.get_inputs()[0].name: tensor})
    result = result_from_logits(np.asarray(outputs[0]))
    json.dump({"category": result.category, "confidence": result.confidence}, sys.stdout)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
