"""Tests for job data models."""

from datetime import datetime
from pathlib import Path

import pytest

from clop.jobs.models import (
    JobRecord,
    JobState,
    MediaType,
    OptimisationOptions,
    OptimisationResult,
    Source,
    next_scaling_factor,
)


class TestJobState:

    @pytest.mark.parametrize("state", [JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED])
    def test_terminal_states(self, state):
        assert state.is_terminal

    @pytest.mark.parametrize("state", [JobState.QUEUED, JobState.RUNNING])
    def test_active_states(self, state):
        assert not state.is_terminal


class TestMediaType:

    @pytest.mark.parametrize("name,expected", [
        ("a.PNG", MediaType.IMAGE),
        ("a.jpeg", MediaType.IMAGE),
        ("a.gif", MediaType.IMAGE),
        ("a.mov", MediaType.VIDEO),
        ("a.m4v", MediaType.VIDEO),
        ("a.pdf", MediaType.UNKNOWN),
        ("noext", MediaType.UNKNOWN),
    ])
    def test_from_path(self, name, expected):
        assert MediaType.from_path(Path(name)) == expected


class TestOptimisationOptions:

    def test_defaults(self):
        options = OptimisationOptions()
        assert options.aggressive is None
        assert options.downscale_factor == 1.0

    @pytest.mark.parametrize("factor", [0, -0.5, 1.5])
    def test_invalid_downscale(self, factor):
        with pytest.raises(ValueError):
            OptimisationOptions(downscale_factor=factor)


class TestScalingFactor:

    @pytest.mark.parametrize("current,expected", [
        (1.0, 0.75),
        (0.75, 0.5),
        (0.5, 0.4),
        (0.2, 0.1),
        (0.1, 0.1),
    ])
    def test_steps(self, current, expected):
        assert next_scaling_factor(current) == expected


class TestJobRecord:

    def test_snapshot_is_independent(self):
        record = JobRecord(id="job", source=Source(path=Path("/tmp/a.png")))
        snapshot = record.snapshot()

        record.state = JobState.RUNNING

        assert snapshot.state == JobState.QUEUED

    def test_cancelled_before_start(self):
        record = JobRecord(id="job", source=Source(path=Path("/tmp/a.png")), state=JobState.CANCELLED)
        assert record.cancelled_before_start

        record.started_at = datetime.now()
        assert not record.cancelled_before_start

    def test_to_dict(self):
        result = OptimisationResult(
            path=Path("/tmp/a.png"),
            backup_path=Path("/w/backups/job.png"),
            original_size=1000,
            optimised_size=400,
        )
        record = JobRecord(
            id="job",
            source=Source(path=Path("/tmp/a.png"), media_type=MediaType.IMAGE, size=1000),
            state=JobState.SUCCEEDED,
            is_original=False,
            result=result,
        )

        data = record.to_dict()

        assert data["state"] == "succeeded"
        assert data["source"]["media_type"] == "image"
        assert data["result"]["saved_bytes"] == 600
        assert data["started_at"] is None
