"""
Intrusion detection adapter.

- features: flow sample to model feature vector
- predictor: out-of-process classifier interface
- service: storage, alerting and broadcast around a verdict
- simulation: synthetic attack traffic
"""

from .features import FEATURE_NAMES, extract_features
from .predictor import Predictor, SubprocessPredictor, Verdict, parse_verdict
from .service import AnalysisResult, IDSService, intrusion_message
from .simulation import AttackType, generate_test_traffic

__all__ = [
    "FEATURE_NAMES",
    "AnalysisResult",
    "AttackType",
    "IDSService",
    "Predictor",
    "SubprocessPredictor",
    "Verdict",
    "extract_features",
    "generate_test_traffic",
    "intrusion_message",
    "parse_verdict",
]
