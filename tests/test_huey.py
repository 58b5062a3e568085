"""Tests for Huey task wiring (radio/huey_app.py)."""

from unittest import mock

from radio import huey_app


class TestEnqueue:
    def test_enqueue_job_dispatches_task(self):
        with mock.patch.object(huey_app, "process_job_task") as task:
            huey_app.enqueue_job("job-1")
        task.assert_called_once_with("job-1")

    def test_enqueue_sweep_dispatches_task(self):
        with mock.patch.object(huey_app, "sweep_now_task") as task:
            huey_app.enqueue_sweep()
        task.assert_called_once_with()


class TestTasks:
    def test_process_job_task_runs_pipeline(self):
        """Task bodies call through to the pipeline (run via call_local)."""
        with mock.patch("radio.pipeline.process_job", return_value={"status": "completed"}) as run:
            result = huey_app.process_job_task.call_local("job-1")
        run.assert_called_once_with("job-1")
        assert result == {"status": "completed"}

    def test_sweep_task_runs_sweep(self):
        outcome = {"status": "no_work", "lost": [], "results": []}
        with mock.patch("radio.pipeline.sweep", return_value=outcome) as run:
            assert huey_app.sweep_task.call_local() == outcome
        run.assert_called_once_with()

    def test_sweep_now_task_runs_sweep(self):
        outcome = {"status": "processed", "lost": ["job-2"], "results": []}
        with mock.patch("radio.pipeline.sweep", return_value=outcome):
            assert huey_app.sweep_now_task.call_local() == outcome
