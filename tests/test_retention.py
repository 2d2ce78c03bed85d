import os
import time
from datetime import timedelta

from test_json_store import make_artifact

from mediadl.app.retention import SWEEP_JOB_ID, RetentionSweeper
from mediadl.core.entities import ArtifactStatus, RetentionPolicy

DAY = 24 * 3600


def _age(path, seconds):
    old = time.time() - seconds
    os.utime(path, (old, old))


def test_sweep_removes_old_files_and_demotes_records(temp_area, repo) -> None:
    old = repo.record(make_artifact(temp_area, url="https://youtu.be/old", size=300))
    fresh = repo.record(make_artifact(temp_area, url="https://youtu.be/new", size=100))
    _age(old.primary_file.path, 8 * DAY)

    report = RetentionSweeper(temp_area, repo, RetentionPolicy(max_artifact_age=timedelta(days=7))).sweep()

    assert report.deleted_count == 1
    assert report.freed_bytes == 300
    assert not os.path.exists(old.primary_file.path)
    assert os.path.exists(fresh.primary_file.path)
    assert repo.get(old.id, "alice").status == ArtifactStatus.DELETED
    assert repo.get(fresh.id, "alice").status == ArtifactStatus.COMPLETED


def test_sweep_demotes_every_record_naming_the_file(temp_area, repo) -> None:
    first = repo.record(make_artifact(temp_area, identity="alice"))
    copy = make_artifact(temp_area, identity="bob")
    os.remove(copy.primary_file.path)
    copy.primary_file = first.primary_file
    repo.record(copy)
    _age(first.primary_file.path, 30 * DAY)

    RetentionSweeper(temp_area, repo).sweep()

    assert repo.get(first.id, "alice").status == ArtifactStatus.DELETED
    assert repo.get(copy.id, "bob").status == ArtifactStatus.DELETED


def test_sweep_never_touches_index_files(temp_area, repo) -> None:
    repo.record(make_artifact(temp_area))
    repo.set_storage_limit("alice", 1000)
    _age(temp_area.settings_path, 30 * DAY)
    _age(temp_area.history_path, 30 * DAY)

    RetentionSweeper(temp_area, repo).sweep()

    assert temp_area.history_path.exists()
    assert temp_area.settings_path.exists()


def test_orphan_files_are_swept_too(temp_area, repo) -> None:
    orphan = temp_area.new_path("mp4")
    orphan.write_bytes(b"z" * 10)
    _age(orphan, 8 * DAY)

    report = RetentionSweeper(temp_area, repo).sweep(now=time.time())

    assert report.deleted_count == 1
    assert not orphan.exists()


def test_sweep_with_explicit_now(temp_area, repo) -> None:
    artifact = repo.record(make_artifact(temp_area))
    report = RetentionSweeper(temp_area, repo).sweep(now=time.time() + 8 * DAY)

    assert report.deleted_count == 1
    assert repo.get(artifact.id, "alice").status == ArtifactStatus.DELETED


def test_start_schedules_interval_job_and_shutdown_stops_it(temp_area, repo) -> None:
    sweeper = RetentionSweeper(temp_area, repo, RetentionPolicy(sweep_interval=timedelta(hours=6)))
    sweeper.start()
    try:
        job = sweeper.scheduler.get_job(SWEEP_JOB_ID)
        assert job is not None
        assert job.trigger.interval == timedelta(hours=6)
        assert job.max_instances == 1
        assert job.coalesce is True
    finally:
        sweeper.shutdown()

    assert sweeper.scheduler is None
