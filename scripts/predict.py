#!/usr/bin/env python3
"""
Intrusion detection predictor.

Loads a trained classifier with joblib, reads one JSON feature vector from
the last command-line argument and prints a single JSON verdict:

    {"is_anomaly": true, "probability": 0.82}

The model path comes from IDS_MODEL_PATH (default ./rf_model.joblib). Any
failure exits non-zero with the reason on stderr.
"""

import json
import os
import sys
from pathlib import Path

import joblib

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mikromon.ids.features import FEATURE_NAMES

ANOMALY_THRESHOLD = 0.5


def load_model(path: Path):
    if not path.exists():
        raise FileNotFoundError(f"Model file not found at {path}")
    return joblib.load(path)


def feature_order(model) -> list[str]:
    """Column order the model was trained on, falling back to the extractor's order."""
    names = getattr(model, "feature_names_in_", None)
    if names is not None:
        return [str(name) for name in names]
    return list(FEATURE_NAMES)


def predict(model, features: dict[str, float]) -> dict:
    row = [[float(features.get(name, 0.0)) for name in feature_order(model)]]
    probabilities = model.predict_proba(row)[0]

    # Probability of the positive (attack) class
    classes = [str(c).lower() for c in getattr(model, "classes_", [])]
    if len(probabilities) == 1:
        probability = 0.0 if classes and classes[0] in ("0", "benign", "normal") else 1.0
    elif "1" in classes:
        probability = float(probabilities[classes.index("1")])
    else:
        probability = 1.0 - float(probabilities[0])

    return {"is_anomaly": probability >= ANOMALY_THRESHOLD, "probability": probability}


def main() -> int:
    if len(sys.argv) < 2:
        print("usage: predict.py '<features json>'", file=sys.stderr)
        return 2

    try:
        features = json.loads(sys.argv[-1])
    except json.JSONDecodeError as e:
        print(f"Invalid feature JSON: {e}", file=sys.stderr)
        return 2

    model_path = Path(os.environ.get("IDS_MODEL_PATH", "./rf_model.joblib"))
    try:
        model = load_model(model_path)
        verdict = predict(model, features)
    except Exception as e:
        print(f"Prediction failed: {e}", file=sys.stderr)
        return 1

    print(json.dumps(verdict))
    return 0


if __name__ == "__main__":
    sys.exit(main())
