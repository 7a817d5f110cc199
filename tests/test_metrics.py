"""
Unit tests for workguard/metrics.py
"""

from workguard import metrics


def test_status_gauges(metric_value):
    metrics.track_component_status("gauge-test", "error")
    metrics.track_provider_status("codelens", "gauge-test", "degraded")
    assert metric_value("workguard_component_status", component_name="gauge-test") == 2
    assert metric_value("workguard_provider_status",
                        provider_type="codelens", component_name="gauge-test") == 1


def test_exposition_text():
    metrics.ERRORS_TOTAL.labels(category="parsing", level="warning").inc()
    text = metrics.get_metrics_text()
    assert "workguard_errors_total" in text
    assert metrics.get_metrics_content_type().startswith("text/plain")
