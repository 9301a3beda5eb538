from brandguard.services import job_queue


def test_enqueue_analysis_email_inline_delivers(monkeypatch) -> None:
    called: list[str] = []

    def _fake_deliver(analysis_id: str, email_service=None) -> bool:
        called.append(analysis_id)
        return True

    monkeypatch.setattr(job_queue, "QUEUE_MODE", "inline")
    monkeypatch.setattr(job_queue, "deliver_analysis_email", _fake_deliver)

    job_id = job_queue.enqueue_analysis_email("analysis-1")

    assert called == ["analysis-1"]
    assert isinstance(job_id, str)
    assert len(job_id) > 0


def test_enqueue_analysis_email_inline_reports_failed_delivery(monkeypatch) -> None:
    monkeypatch.setattr(job_queue, "QUEUE_MODE", "inline")
    monkeypatch.setattr(job_queue, "deliver_analysis_email", lambda analysis_id, email_service=None: False)

    assert job_queue.enqueue_analysis_email("analysis-1") is None


def test_enqueue_analysis_email_redis_uses_backend(monkeypatch) -> None:
    monkeypatch.setattr(job_queue, "QUEUE_MODE", "redis")
    monkeypatch.setattr(job_queue, "_enqueue_redis", lambda analysis_id: f"job-for-{analysis_id}")

    job_id = job_queue.enqueue_analysis_email("analysis-2")

    assert job_id == "job-for-analysis-2"
