"""
Predictor adapters for the intrusion detection model.

The model itself runs out of process. ``SubprocessPredictor`` hands it the
feature vector as a JSON argument and reads a JSON verdict from stdout.
"""

import asyncio
import json
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from mikromon.errors import PredictorError
from mikromon.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Verdict:
    """Model output for one feature vector."""

    is_anomaly: bool
    probability: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_anomaly": self.is_anomaly,
            "probability": self.probability,
            "timestamp": self.timestamp.isoformat(),
        }


class Predictor(ABC):
    """Interface to an anomaly classifier."""

    @abstractmethod
    async def predict(self, features: dict[str, float]) -> Verdict:
        """
        Classify a feature vector.

        Raises:
            PredictorError: If no verdict could be produced
        """

    async def is_available(self) -> bool:
        return True


def parse_verdict(output: str) -> Verdict:
    """Parse ``{"is_anomaly": bool, "probability": float}``."""
    try:
        data = json.loads(output)
        is_anomaly = data["is_anomaly"]
        probability = float(data["probability"])
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise PredictorError(
            "Malformed predictor output", {"output": output[:200], "reason": str(e)}
        ) from e

    if not isinstance(is_anomaly, bool):
        raise PredictorError("Malformed predictor output", {"output": output[:200]})
    return Verdict(is_anomaly=is_anomaly, probability=probability)


class SubprocessPredictor(Predictor):
    """Runs an external command per prediction."""

    def __init__(self, command: str | list[str], timeout: float = 10.0) -> None:
        self.argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.argv:
            raise ValueError("Predictor command must not be empty")
        self.timeout = timeout

    async def predict(self, features: dict[str, float]) -> Verdict:
        cmd = [*self.argv, json.dumps(features)]

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise PredictorError(
                "Predictor could not be started", {"command": self.argv[0], "reason": str(e)}
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError as e:
            process.kill()
            await process.wait()
            raise PredictorError(
                "Predictor timed out", {"timeout_seconds": self.timeout}
            ) from e

        if process.returncode != 0:
            error_output = stderr.decode(errors="replace").strip()
            logger.error(
                "Predictor exited with error",
                returncode=process.returncode,
                stderr=error_output[:500],
            )
            raise PredictorError(
                f"Predictor exited with code {process.returncode}",
                {"stderr": error_output[:200]},
            )

        return parse_verdict(stdout.decode(errors="replace").strip())
