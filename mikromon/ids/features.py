"""
Feature extraction for the intrusion detection model.

Maps a single flow sample onto the CIC-IDS2017 column names the model was
trained on. Most per-direction values are approximations: the router only
reports totals, so traffic is assumed to split evenly in both directions.
"""

from mikromon.connections.types import TrafficSample

# Ethernet bounds
MTU = 1500
MIN_FRAME = 64
TCP_HEADER = 20


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def extract_features(sample: TrafficSample) -> dict[str, float]:
    """
    Build the model feature vector for a flow.

    Pure and deterministic. A zero packet count or zero duration yields 0 for
    every ratio that would divide by it.

    Args:
        sample: Flow observed on a device; ``flow_duration`` is in milliseconds

    Returns:
        Mapping of feature name to value
    """
    packets = sample.packet_count
    total_bytes = sample.bytes
    duration = sample.flow_duration
    seconds = duration / 1000
    is_tcp = sample.protocol.lower() == "tcp"

    half_packets = packets // 2
    half_bytes = total_bytes // 2
    segment_size = _ratio(total_bytes / 2, packets / 2)
    mean_packet = _ratio(total_bytes, packets)
    iat_mean = _ratio(duration, packets)

    return {
        "Destination Port": float(sample.destination_port),
        "Flow Duration": float(duration),
        "Total Fwd Packets": float(half_packets),
        "Total Backward Packets": float(half_packets),
        "Total Length of Fwd Packets": float(half_bytes),
        "Total Length of Bwd Packets": float(half_bytes),
        "Fwd Packet Length Max": float(MTU),
        "Fwd Packet Length Min": float(MIN_FRAME),
        "Fwd Packet Length Mean": float(int(segment_size)),
        "Fwd Packet Length Std": 200.0,
        "Bwd Packet Length Max": float(MTU),
        "Bwd Packet Length Min": float(MIN_FRAME),
        "Bwd Packet Length Mean": float(int(segment_size)),
        "Bwd Packet Length Std": 200.0,
        "Flow Bytes/s": _ratio(total_bytes, seconds),
        "Flow Packets/s": _ratio(packets, seconds),
        "Flow IAT Mean": iat_mean,
        "Flow IAT Std": 100.0,
        "Flow IAT Max": float(duration),
        "Flow IAT Min": 1.0,
        "Fwd IAT Total": duration / 2,
        "Fwd IAT Mean": iat_mean,
        "Fwd IAT Std": 50.0,
        "Fwd IAT Max": duration / 2,
        "Fwd IAT Min": 1.0,
        "Bwd IAT Total": duration / 2,
        "Bwd IAT Mean": iat_mean,
        "Bwd IAT Std": 50.0,
        "Bwd IAT Max": duration / 2,
        "Bwd IAT Min": 1.0,
        "Fwd PSH Flags": 1.0 if is_tcp else 0.0,
        "Bwd PSH Flags": 1.0 if is_tcp else 0.0,
        "Fwd URG Flags": 0.0,
        "Bwd URG Flags": 0.0,
        "Fwd Header Length": TCP_HEADER * (packets / 2) if is_tcp else 0.0,
        "Bwd Header Length": TCP_HEADER * (packets / 2) if is_tcp else 0.0,
        "Fwd Packets/s": _ratio(packets / 2, seconds),
        "Bwd Packets/s": _ratio(packets / 2, seconds),
        "Min Packet Length": float(MIN_FRAME),
        "Max Packet Length": float(MTU),
        "Packet Length Mean": mean_packet,
        "Packet Length Std": 300.0,
        "Packet Length Variance": 90000.0,
        "FIN Flag Count": 1.0 if is_tcp else 0.0,
        "SYN Flag Count": 1.0 if is_tcp else 0.0,
        "RST Flag Count": 0.0,
        "PSH Flag Count": 2.0 if is_tcp else 0.0,
        "ACK Flag Count": float(max(packets - 2, 0)) if is_tcp else 0.0,
        "URG Flag Count": 0.0,
        "CWE Flag Count": 0.0,
        "ECE Flag Count": 0.0,
        "Down/Up Ratio": 1.0,
        "Average Packet Size": mean_packet,
        "Avg Fwd Segment Size": segment_size,
        "Avg Bwd Segment Size": segment_size,
    }


FEATURE_NAMES: tuple[str, ...] = tuple(
    extract_features(
        TrafficSample(
            device_id=0,
            source_ip="0.0.0.0",
            destination_ip="0.0.0.0",
            source_port=0,
            destination_port=0,
            protocol="tcp",
            bytes=0,
            packet_count=0,
            flow_duration=0.0,
        )
    )
)
