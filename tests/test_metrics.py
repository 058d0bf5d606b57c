from shorts_relay.core.metrics import (
    record_cleanup_deleted,
    record_delayed_publish,
    record_pipeline_outcome,
    record_scheduler_job,
    record_tick_failure,
    render_prometheus_metrics,
    reset_metrics_for_tests,
)


def test_pipeline_counters_render_with_labels() -> None:
    reset_metrics_for_tests()
    record_pipeline_outcome(scope="mapping", reason="uploaded")
    record_pipeline_outcome(scope="mapping", reason="uploaded")
    record_pipeline_outcome(scope="global", reason="quota")
    record_delayed_publish(status="published", count=2)
    record_delayed_publish(status="rescheduled", count=0)
    record_cleanup_deleted(trigger="interval", count=3)
    record_scheduler_job(job="mapping", status="uploaded")
    record_tick_failure(job="tick")

    body = render_prometheus_metrics(app_name="shorts_relay", app_version="0.1.0", env="test")

    assert 'shorts_relay_pipeline_outcomes_total{scope="mapping",reason="uploaded"} 2' in body
    assert 'shorts_relay_pipeline_outcomes_total{scope="global",reason="quota"} 1' in body
    assert 'shorts_relay_delayed_publish_total{status="published"} 2' in body
    assert 'status="rescheduled"' not in body
    assert 'shorts_relay_cleanup_deleted_total{trigger="interval"} 3' in body
    assert 'shorts_relay_scheduler_jobs_total{job="mapping",status="uploaded"} 1' in body
    assert 'shorts_relay_tick_failures_total{job="tick"} 1' in body
    reset_metrics_for_tests()
