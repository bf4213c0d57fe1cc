__all__ = [
    "aggregate_patterns",
    "predict_availability",
    "network_summary",
    "network_activity",
]

from bicingpulse.analytics.network import network_activity, network_summary
from bicingpulse.analytics.patterns import aggregate_patterns
from bicingpulse.analytics.prediction import predict_availability
