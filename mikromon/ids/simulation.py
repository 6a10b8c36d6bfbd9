"""
Synthetic attack traffic for exercising the detection pipeline.
"""

import random
from datetime import UTC, datetime, timedelta
from enum import Enum

from mikromon.connections.types import TrafficSample


class AttackType(str, Enum):
    """Attack patterns the generator can produce."""

    PORT_SCAN = "port_scan"
    DOS_ATTACK = "dos_attack"
    BRUTEFORCE = "bruteforce"


DEFAULT_SOURCE_IP = "203.0.113.66"
DEFAULT_DESTINATION_IP = "192.168.88.1"


def generate_test_traffic(
    device_id: int,
    attack_type: AttackType | str,
    source_ip: str | None = None,
    destination_ip: str | None = None,
    sample_count: int = 20,
    seed: int | None = None,
) -> list[TrafficSample]:
    """
    Build flow samples that look like the given attack.

    - port_scan: one tiny TCP flow per destination port, sequential ports
    - dos_attack: very high packet rate toward port 80 over short flows
    - bruteforce: repeated short SSH sessions from one source

    Raises:
        ValueError: If the attack type is unknown
    """
    attack = AttackType(attack_type)
    rng = random.Random(seed)
    src = source_ip or DEFAULT_SOURCE_IP
    dst = destination_ip or DEFAULT_DESTINATION_IP
    start = datetime.now(UTC)
    samples = []

    for i in range(sample_count):
        timestamp = start + timedelta(milliseconds=i * 50)
        if attack is AttackType.PORT_SCAN:
            sample = TrafficSample(
                device_id=device_id,
                source_ip=src,
                destination_ip=dst,
                source_port=rng.randint(40000, 65535),
                destination_port=1 + i,
                protocol="tcp",
                bytes=rng.randint(40, 120),
                packet_count=rng.randint(1, 2),
                flow_duration=float(rng.randint(1, 5)),
                timestamp=timestamp,
            )
        elif attack is AttackType.DOS_ATTACK:
            packets = rng.randint(5000, 20000)
            sample = TrafficSample(
                device_id=device_id,
                source_ip=src,
                destination_ip=dst,
                source_port=rng.randint(1024, 65535),
                destination_port=80,
                protocol=rng.choice(["tcp", "udp"]),
                bytes=packets * rng.randint(60, 80),
                packet_count=packets,
                flow_duration=float(rng.randint(100, 1000)),
                timestamp=timestamp,
            )
        else:
            packets = rng.randint(10, 30)
            sample = TrafficSample(
                device_id=device_id,
                source_ip=src,
                destination_ip=dst,
                source_port=rng.randint(40000, 65535),
                destination_port=22,
                protocol="tcp",
                bytes=packets * rng.randint(80, 200),
                packet_count=packets,
                flow_duration=float(rng.randint(500, 3000)),
                timestamp=timestamp,
            )
        samples.append(sample)

    return samples
