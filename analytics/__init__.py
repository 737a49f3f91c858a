"""In-process metrics analytics: buffering, moving averages, anomaly detection and aggregation."""
