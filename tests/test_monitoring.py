from conftest import generation_request
from monitoring import GenerationMonitor


def test_empty_monitor_is_healthy(clock):
    monitor = GenerationMonitor(clock=clock)
    assert monitor.is_healthy()
    assert monitor.success_rate() == 0.0
    assert monitor.get_health_status()['recent_errors'] == 0


def test_running_averages(clock):
    monitor = GenerationMonitor(clock=clock)
    request = generation_request()
    monitor.record_success(request, 1000, tokens_used=500, model='mock')
    monitor.record_success(request, 3000, tokens_used=1500, model='mock')

    assert monitor.average_processing_time == 2000
    assert monitor.average_tokens_per_request() == 1000
    assert monitor.success_rate() == 100.0
    assert monitor.get_metrics()['last_request_time'] is not None


def test_recent_error_makes_monitor_unhealthy_until_window_passes(clock):
    monitor = GenerationMonitor(clock=clock)
    request = generation_request()
    for _ in range(9):
        monitor.record_success(request, 100)
    monitor.record_error(request, 'HTTP 503', status_code=503)

    assert monitor.success_rate() == 90.0
    assert not monitor.is_healthy()

    clock.advance(5 * 60 + 1)
    assert monitor.is_healthy()


def test_error_log_is_bounded(clock):
    monitor = GenerationMonitor(clock=clock)
    request = generation_request()
    for i in range(120):
        monitor.record_error(request, f'error {i}', request_id=f'req_{i}')

    metrics = monitor.get_metrics()
    assert metrics['error_count'] == 120
    assert len(metrics['errors']) == 100
    assert metrics['errors'][0]['error'] == 'error 20'
    assert [e['request_id'] for e in monitor.recent_errors()] == [f'req_{i}' for i in range(110, 120)]


def test_reset_clears_everything(clock):
    monitor = GenerationMonitor(clock=clock)
    monitor.record_error(generation_request(), 'boom')
    monitor.reset()
    assert monitor.request_count == 0
    assert monitor.recent_errors() == []
