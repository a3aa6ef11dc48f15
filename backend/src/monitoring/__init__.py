from src.monitoring.metrics import get_metrics, record_aggregation, record_request

__all__ = ["get_metrics", "record_aggregation", "record_request"]
