import pytest

from test_json_store import make_artifact

from mediadl.app.quota import DEFAULT_STORAGE_LIMIT, QuotaManager, format_bytes
from mediadl.core.entities import UNLIMITED, Role


def test_default_limit_applies_to_unknown_identity(repo) -> None:
    quota = QuotaManager(repo)

    assert quota.limit_for("alice") == DEFAULT_STORAGE_LIMIT
    record = quota.record_for("alice")
    assert record.role == Role.USER
    assert record.current_usage_bytes == 0


def test_admission_is_a_hard_boundary(temp_area, repo) -> None:
    quota = QuotaManager(repo, default_limit=1000)
    repo.record(make_artifact(temp_area, size=600))

    assert quota.admit("alice", 400).allowed
    denied = quota.admit("alice", 401)
    assert not denied.allowed
    assert denied.usage == 600
    assert denied.limit == 1000
    assert "Storage limit exceeded" in denied.reason


def test_explicit_limit_overrides_default(repo) -> None:
    quota = QuotaManager(repo, default_limit=1000)
    quota.set_storage_limit("alice", 5000)

    assert quota.admit("alice", 4000).allowed


@pytest.mark.parametrize("role", ["admin", "super_admin", Role.ADMIN])
def test_privileged_roles_are_never_denied(repo, role) -> None:
    quota = QuotaManager(repo, default_limit=10)
    quota.set_role("root", role)

    assert quota.limit_for("root") == UNLIMITED
    assert quota.admit("root", 10 ** 12).allowed
    assert quota.record_for("root").is_unlimited


def test_unlimited_via_explicit_limit(repo) -> None:
    quota = QuotaManager(repo, default_limit=10)
    quota.set_storage_limit("alice", UNLIMITED)

    assert quota.admit("alice", 10 ** 9).allowed


def test_invalid_limit_is_rejected(repo) -> None:
    with pytest.raises(ValueError):
        QuotaManager(repo).set_storage_limit("alice", -5)


def test_storage_stats(temp_area, repo) -> None:
    quota = QuotaManager(repo, default_limit=1000)
    repo.record(make_artifact(temp_area, url="https://youtu.be/1", size=100))
    repo.record(make_artifact(temp_area, url="https://youtu.be/2", size=150))

    stats = quota.storage_stats("alice")

    assert stats["totalSize"] == 250
    assert stats["activeDownloads"] == 2
    assert stats["usagePercentage"] == pytest.approx(25.0)
    assert stats["isUnlimited"] is False


def test_global_stats_skip_index_files(temp_area, repo) -> None:
    quota = QuotaManager(repo, temp_area=temp_area)
    repo.record(make_artifact(temp_area, size=100))
    repo.record(make_artifact(temp_area, url="https://youtu.be/b", identity="bob", size=40))

    stats = quota.global_stats()

    assert stats["fileCount"] == 2
    assert stats["totalSize"] == 140
    assert stats["totalUsers"] == 2
    assert stats["isUnlimited"] is True


def test_users_overview(temp_area, repo) -> None:
    quota = QuotaManager(repo, default_limit=1024 * 1024)
    repo.record(make_artifact(temp_area, size=2048))

    rows = quota.users_overview()

    assert rows[0]["identity"] == "alice"
    assert rows[0]["currentUsageFormatted"] == "2.00 KB"
    assert rows[0]["storageLimitFormatted"] == "1.00 MB"


def test_format_bytes() -> None:
    assert format_bytes(UNLIMITED) == "Unlimited"
    assert format_bytes(0) == "0 Bytes"
    assert format_bytes(512) == "512 Bytes"
    assert format_bytes(2 * 1024 ** 3) == "2.00 GB"
