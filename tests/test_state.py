import pytest

from site_mirror.models import JobStatus
from site_mirror.state import InvalidTransition, JobNotFound, MirrorPaused


def test_unknown_job(state):
    with pytest.raises(JobNotFound):
        state.get("nope")


def test_valid_lifecycle(state, make_job):
    job_id = make_job()
    assert state.get(job_id).status == JobStatus.PENDING
    state.transition(job_id, JobStatus.PROCESSING)
    job = state.transition(job_id, JobStatus.COMPLETE, progress=100)
    assert job.status == JobStatus.COMPLETE
    assert job.completed_at is not None


def test_terminal_states_are_final(state, make_job):
    job_id = make_job()
    state.transition(job_id, JobStatus.PROCESSING)
    state.transition(job_id, JobStatus.ERROR, error_message="boom")
    with pytest.raises(InvalidTransition):
        state.transition(job_id, JobStatus.PROCESSING)
    with pytest.raises(InvalidTransition):
        state.request_pause(job_id)


def test_pause_flag_does_not_change_status(state, make_job):
    job_id = make_job()
    state.transition(job_id, JobStatus.PROCESSING)
    job = state.request_pause(job_id)
    assert job.status == JobStatus.PROCESSING
    assert job.is_paused
    with pytest.raises(MirrorPaused):
        state.checkpoint(job_id)

    state.clear_pause(job_id)
    state.checkpoint(job_id)


def test_mark_paused_then_resume(state, make_job):
    job_id = make_job()
    state.transition(job_id, JobStatus.PROCESSING)
    job = state.mark_paused(job_id, "Paused at 40%")
    assert job.status == JobStatus.PAUSED
    assert job.current_step == "Paused at 40%"
    with pytest.raises(InvalidTransition):
        state.transition(job_id, JobStatus.COMPLETE)
    assert state.transition(job_id, JobStatus.PROCESSING).status == JobStatus.PROCESSING


def test_progress_only_moves_forward(state, make_job):
    job_id = make_job()
    state.transition(job_id, JobStatus.PROCESSING)
    state.update_progress(job_id, 40, "Downloading images")
    state.update_progress(job_id, 30, "Rewriting inline styles")
    job = state.get(job_id)
    assert job.progress == 40
    assert job.current_step == "Rewriting inline styles"


def test_progress_ignored_outside_processing(state, make_job):
    job_id = make_job()
    state.update_progress(job_id, 50, "too early")
    assert state.get(job_id).progress == 0


def test_withdraw_pause_only_before_the_run_stops(state, make_job):
    job_id = make_job()
    assert state.withdraw_pause(job_id) is None

    state.request_pause(job_id)
    job = state.withdraw_pause(job_id)
    assert job.status == JobStatus.PENDING
    assert not job.is_paused

    state.transition(job_id, JobStatus.PROCESSING)
    state.request_pause(job_id)
    state.mark_paused(job_id)
    assert state.withdraw_pause(job_id) is None
    assert state.get(job_id).is_paused
