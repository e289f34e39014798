"""Tests for the render job model."""

from datetime import datetime, timedelta

import pytest

from clipex.models.job import JobStatus, RenderJob


class TestJobStatus:
    """Tests for JobStatus enum."""

    def test_status_values(self):
        """Test status string values."""
        assert JobStatus.PENDING.value == "pending"
        assert JobStatus.PROCESSING.value == "processing"
        assert JobStatus.COMPLETED.value == "completed"
        assert JobStatus.FAILED.value == "failed"


class TestRenderJob:
    """Tests for RenderJob state handling."""

    @pytest.fixture
    def job(self):
        return RenderJob()

    def test_defaults(self, job):
        """Test a new job is pending at zero progress."""
        assert job.status == JobStatus.PENDING
        assert job.progress == 0
        assert job.id
        assert not job.is_terminal

    def test_forward_path(self, job):
        """Test pending -> processing -> completed."""
        assert job.update_status(JobStatus.PROCESSING)
        assert job.complete("/renders/render_x.mp4", "/data/renders/render_x.mp4")
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.url == "/renders/render_x.mp4"
        assert job.is_terminal

    def test_pending_can_fail(self, job):
        """Test that a job may fail before it starts processing."""
        assert job.fail("boom")
        assert job.status == JobStatus.FAILED
        assert job.error == "boom"

    def test_no_transition_out_of_terminal(self, job):
        """Test that completed and failed are final."""
        job.update_status(JobStatus.PROCESSING)
        job.fail("first")

        assert not job.update_status(JobStatus.PROCESSING)
        assert not job.complete("/renders/late.mp4")
        assert not job.fail("second")
        assert job.status == JobStatus.FAILED
        assert job.error == "first"
        assert job.url is None

    def test_no_backward_transition(self, job):
        """Test that processing cannot go back to pending."""
        job.update_status(JobStatus.PROCESSING)
        assert not job.update_status(JobStatus.PENDING)
        assert job.status == JobStatus.PROCESSING

    def test_pending_cannot_complete(self, job):
        """Test that completion requires processing."""
        assert not job.complete("/renders/x.mp4")
        assert job.status == JobStatus.PENDING

    def test_progress_clamped_while_running(self, job):
        """Test progress stays within [1, 99] while processing."""
        job.update_status(JobStatus.PROCESSING)

        job.report_progress(0)
        assert job.progress == 1
        job.report_progress(150)
        assert job.progress == 99

    def test_progress_monotonic(self, job):
        """Test progress never decreases."""
        job.update_status(JobStatus.PROCESSING)
        job.report_progress(40)
        assert not job.report_progress(20)
        assert job.progress == 40
        assert job.report_progress(60)
        assert job.progress == 60

    def test_progress_ignored_unless_processing(self, job):
        """Test progress reports before start or after completion are ignored."""
        assert not job.report_progress(50)
        assert job.progress == 0

        job.update_status(JobStatus.PROCESSING)
        job.complete("/renders/x.mp4")
        assert not job.report_progress(50)
        assert job.progress == 100

    def test_to_status(self, job):
        """Test the public status payload omits empty fields."""
        assert job.to_status() == {"id": job.id, "status": "pending", "progress": 0}

        job.fail("Fetch timed out after 60s: https://example.com/a.mp4")
        payload = job.to_status()
        assert payload["status"] == "failed"
        assert "timed out" in payload["error"]
        assert "url" not in payload

    def test_age(self, job):
        """Test age computation against an explicit clock."""
        later = job.created_at + timedelta(seconds=90)
        assert job.age_seconds(later) == pytest.approx(90)
        assert job.age_seconds(datetime.now()) >= 0
