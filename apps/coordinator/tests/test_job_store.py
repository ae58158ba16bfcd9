import pytest

from coordinator.models import JobRecord
from coordinator.services.job_store import (
    InvalidStatusTransitionError,
    JobNotFoundError,
    JobStore,
)
from shared.coordination import JobStatus


def _create(store: JobStore, title: str, submitter_id: str = "U1") -> JobRecord:
    return store.create(title=title, submitter_id=submitter_id, destination="C1")


def test_enqueue_then_list_returns_same_identity(clock) -> None:
    store = JobStore(clock=clock)
    job = JobRecord(
        id="job-1",
        title="Launch Post",
        submitter_id="U1",
        destination="C1",
        created_at=clock(),
    )

    store.enqueue(job)
    listed = store.list_jobs()

    assert len(listed) == 1
    assert (listed[0].id, listed[0].title, listed[0].submitter_id) == ("job-1", "Launch Post", "U1")
    assert listed[0].status == JobStatus.PENDING


def test_create_assigns_unique_time_derived_ids(clock) -> None:
    store = JobStore(clock=clock)

    first = _create(store, "A")
    second = _create(store, "B")

    assert first.id == str(int(clock().timestamp() * 1000))
    assert second.id == str(int(first.id) + 1)


def test_created_at_never_goes_backwards(clock) -> None:
    store = JobStore(clock=clock)
    first = _create(store, "A")

    clock.advance(-30)
    second = _create(store, "B")

    assert second.created_at == first.created_at


def test_list_pending_filters_status_and_age_without_deleting(clock) -> None:
    store = JobStore(clock=clock)
    old = _create(store, "old")
    clock.advance(200)
    waiting = _create(store, "waiting")
    store.update_status(waiting.id, JobStatus.WAITING_FOR_SELECTION)
    done = _create(store, "done")
    store.update_status(done.id, JobStatus.COMPLETED)
    fresh = _create(store, "fresh")

    pending = store.list_pending(max_age_seconds=180)

    assert [job.id for job in pending] == [waiting.id, fresh.id]
    assert old.id in {job.id for job in store.list_jobs()}


def test_update_status_sets_message_and_returns_record(clock) -> None:
    store = JobStore(clock=clock)
    job = _create(store, "A")

    updated = store.update_status(job.id, JobStatus.PROCESSING, "Creating templates...")
    unchanged_message = store.update_status(job.id, JobStatus.COMPLETED)

    assert updated.status == JobStatus.PROCESSING
    assert updated.status_message == "Creating templates..."
    assert unchanged_message.status == JobStatus.COMPLETED
    assert unchanged_message.status_message == "Creating templates..."


def test_update_status_unknown_job_raises_not_found(clock) -> None:
    store = JobStore(clock=clock)

    with pytest.raises(JobNotFoundError, match="missing"):
        store.update_status("missing", JobStatus.COMPLETED)


@pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.ERROR])
def test_terminal_status_never_reopens(clock, terminal: JobStatus) -> None:
    store = JobStore(clock=clock)
    job = _create(store, "A")
    store.update_status(job.id, terminal)

    with pytest.raises(InvalidStatusTransitionError):
        store.update_status(job.id, JobStatus.PENDING)

    assert store.get(job.id).status == terminal


def test_returned_records_are_copies(clock) -> None:
    store = JobStore(clock=clock)
    job = _create(store, "A")

    job.status = JobStatus.ERROR

    assert store.get(job.id).status == JobStatus.PENDING


def test_prune_removes_old_and_stale_terminal_jobs(clock) -> None:
    store = JobStore(clock=clock)
    ancient = _create(store, "ancient")
    clock.advance(500)
    finished = _create(store, "finished")
    store.update_status(finished.id, JobStatus.COMPLETED)
    active = _create(store, "active")
    clock.advance(150)

    removed = store.prune_expired(max_age_seconds=600, terminal_max_age_seconds=120)

    assert removed == 2
    remaining = {job.id for job in store.list_jobs()}
    assert remaining == {active.id}
    assert ancient.id not in remaining


def test_prune_keeps_latest_record_per_title(clock) -> None:
    store = JobStore(clock=clock)
    first = _create(store, "Launch Post", "U1")
    other = _create(store, "Other", "U2")
    clock.advance(1)
    latest = _create(store, "Launch Post", "U3")

    removed = store.prune_expired(max_age_seconds=600, terminal_max_age_seconds=120)

    assert removed == 1
    assert [job.id for job in store.list_jobs()] == [other.id, latest.id]
    assert store.get(first.id) is None


def test_has_active_jobs_ignores_aged_out_pending(clock) -> None:
    store = JobStore(clock=clock)
    job = _create(store, "A")
    assert store.has_active_jobs(pending_max_age_seconds=180)

    clock.advance(181)
    assert not store.has_active_jobs(pending_max_age_seconds=180)

    store.update_status(job.id, JobStatus.PROCESSING)
    assert store.has_active_jobs(pending_max_age_seconds=180)
    assert not store.has_active_jobs(pending_max_age_seconds=180, submitter_id="U2")


def test_reset_clears_everything(clock) -> None:
    store = JobStore(clock=clock)
    _create(store, "A")
    _create(store, "B")

    store.reset()

    assert store.list_jobs() == []
    assert len(store) == 0
