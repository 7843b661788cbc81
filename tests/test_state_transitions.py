"""State transition tests for GenerationJob model.

Tests focus on validating the job lifecycle state machine:
- starting → processing → {succeeded | failed | cancelled}
- Terminal states are sticky (every transition out of them is rejected)
- Submission must have produced a provider id before processing
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from lumina.models.generation import (
    GENERIC_CANCELLED_MESSAGE,
    GenerationJob,
    GenerationStatus,
    InvalidStateTransition,
)


def make_job(**kwargs) -> GenerationJob:
    kwargs.setdefault("user_id", uuid4())
    return GenerationJob(
        prompt="a red fox in snow",
        aspect_ratio="1:1",
        model_version="black-forest-labs/flux-pro",
        cost_credits=Decimal("0.8"),
        **kwargs,
    )


def test_new_job_starts_in_starting_state():
    job = make_job()

    assert job.status == GenerationStatus.STARTING
    assert job.provider_job_id is None
    assert job.completed_at is None
    assert not job.is_terminal
    assert not job.can_cancel  # never reached the provider


def test_happy_path_to_succeeded():
    job = make_job()

    job.mark_processing("pred-123")
    assert job.status == GenerationStatus.PROCESSING
    assert job.provider_job_id == "pred-123"
    assert job.can_cancel

    # Repeated processing writes are idempotent
    job.mark_processing()
    assert job.status == GenerationStatus.PROCESSING

    job.mark_succeeded("https://storage.test/generations/u/j.png")
    assert job.status == GenerationStatus.SUCCEEDED
    assert job.image_url == "https://storage.test/generations/u/j.png"
    assert job.error_message is None
    assert job.completed_at is not None
    assert job.is_terminal


def test_processing_requires_provider_id():
    job = make_job()

    with pytest.raises(InvalidStateTransition, match="provider job id"):
        job.mark_processing()

    assert job.status == GenerationStatus.STARTING


def test_failed_submission_goes_straight_to_failed():
    job = make_job()

    job.mark_failed("Provider unavailable (503)")

    assert job.status == GenerationStatus.FAILED
    assert job.error_message == "Provider unavailable (503)"
    assert job.image_url is None
    assert job.completed_at is not None


def test_failed_uses_generic_message_when_empty():
    job = make_job()

    job.mark_failed("")

    assert job.error_message == "Generation failed"


def test_error_message_is_truncated():
    job = make_job()

    job.mark_failed("x" * 5000)

    assert len(job.error_message) == 1000


def test_cancelled_keeps_provider_error_when_given():
    job = make_job()
    job.mark_processing("pred-1")

    job.mark_cancelled("Prediction was canceled")

    assert job.status == GenerationStatus.CANCELLED
    assert job.error_message == "Prediction was canceled"
    assert job.completed_at is not None


def test_cancelled_without_reason_still_records_one():
    job = make_job()
    job.mark_processing("pred-1")

    job.mark_cancelled()

    assert job.error_message == GENERIC_CANCELLED_MESSAGE
    assert job.image_url is None


def test_succeeded_requires_image_url():
    job = make_job()
    job.mark_processing("pred-1")

    with pytest.raises(ValueError):
        job.mark_succeeded("")

    assert job.status == GenerationStatus.PROCESSING


@pytest.mark.parametrize(
    "finish",
    [
        lambda job: job.mark_succeeded("https://img.test/1.png"),
        lambda job: job.mark_failed("boom"),
        lambda job: job.mark_cancelled(),
    ],
    ids=["succeeded", "failed", "cancelled"],
)
def test_terminal_states_are_sticky(finish):
    job = make_job()
    job.mark_processing("pred-1")
    finish(job)
    status, completed_at = job.status, job.completed_at

    with pytest.raises(InvalidStateTransition):
        job.mark_processing("pred-2")
    with pytest.raises(InvalidStateTransition):
        job.mark_succeeded("https://img.test/other.png")
    with pytest.raises(InvalidStateTransition):
        job.mark_failed("late failure")
    with pytest.raises(InvalidStateTransition):
        job.mark_cancelled()

    assert job.status == status
    assert job.completed_at == completed_at
    assert not job.can_cancel


def test_status_is_terminal_property():
    assert GenerationStatus.SUCCEEDED.is_terminal
    assert GenerationStatus.FAILED.is_terminal
    assert GenerationStatus.CANCELLED.is_terminal
    assert not GenerationStatus.STARTING.is_terminal
    assert not GenerationStatus.PROCESSING.is_terminal
