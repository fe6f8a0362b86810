"""End-to-end tests for the idx commands against fake registry and embedding clients."""

from __future__ import annotations

from typer.testing import CliRunner

from idx.cli.main import app
from idx.errors import EmbeddingError, FetchError


runner = CliRunner()


def _init(project):
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0, result.output
    assert (project / ".index" / "index.db").is_file()
    return result


# ---------------------------------------------------------------------------
# idx init / update / index
# ---------------------------------------------------------------------------


def test_init_indexes_dependencies(project) -> None:
    result = _init(project)
    assert "Created" in result.output
    assert "Resolved 2 dependencies" in result.output
    assert "Indexed 2" in result.output


def test_init_twice_reports_already_indexed(project, registry) -> None:
    _init(project)
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0
    assert "Already indexed 2" in result.output
    assert len(registry.fetched) == 2


def test_init_dry_run(project) -> None:
    result = runner.invoke(app, ["init", "--dry-run"])
    assert result.exit_code == 0
    assert "npm:lodash@4.17.21" in result.output
    assert "pypi:rich@13.7.0" in result.output
    assert not (project / ".index").exists()


def test_init_not_a_directory(project) -> None:
    result = runner.invoke(app, ["init", "missing"])
    assert result.exit_code == 1
    assert "Not a directory" in result.output


def test_init_fetch_failure_warns_and_exits_0(project, registry) -> None:
    registry.errors["pypi:rich@13.7.0"] = FetchError("HTTP 404", "not_found")
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0
    assert "Failed 1" in result.output
    assert "idx retry --all" in result.output


def test_init_auth_failure_exits_1(project, fake_client) -> None:
    fake_client.fail["cloneDeep"] = EmbeddingError("invalid api key", "auth")
    fake_client.fail["Console"] = EmbeddingError("invalid api key", "auth")
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 1
    assert "API key" in result.output


def test_update_applies_version_bump(project, write_manifest) -> None:
    _init(project)
    write_manifest(project, {"lodash": "4.17.22"})
    result = runner.invoke(app, ["update"])
    assert result.exit_code == 0
    assert "4.17.21 → 4.17.22" in result.output
    assert "Removed 1 replaced version(s)." in result.output

    listing = runner.invoke(app, ["list", "--registry", "npm"])
    assert "4.17.22" in listing.output
    assert "4.17.21" not in listing.output


def test_update_in_sync(project) -> None:
    _init(project)
    result = runner.invoke(app, ["update"])
    assert result.exit_code == 0
    assert "in sync" in result.output


def test_index_one_package(project) -> None:
    _init(project)
    result = runner.invoke(app, ["index", "npm:lodash@4.17.22"])
    assert result.exit_code == 0
    assert "Indexed 1" in result.output


# ---------------------------------------------------------------------------
# idx list / stats / status / search
# ---------------------------------------------------------------------------


def test_list(project) -> None:
    _init(project)
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "lodash" in result.output
    assert "rich" in result.output


def test_list_unknown_status(project) -> None:
    _init(project)
    result = runner.invoke(app, ["list", "--status", "done"])
    assert result.exit_code == 1
    assert "Unknown status" in result.output


def test_stats(project) -> None:
    _init(project)
    result = runner.invoke(app, ["stats"])
    assert result.exit_code == 0
    assert "Packages" in result.output
    assert "openai/text-embedding-3-small" in result.output


def test_status_in_sync(project) -> None:
    _init(project)
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "2 package(s) in sync" in result.output


def test_status_shows_pending_changes(project, write_manifest) -> None:
    _init(project)
    write_manifest(project, {"lodash": "4.17.22"})
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "Pending changes" in result.output
    assert "replaces 4.17.21" in result.output


def test_search(project) -> None:
    _init(project)
    result = runner.invoke(app, ["search", "deep copy", "--registry", "npm"])
    assert result.exit_code == 0
    assert "cloneDeep" in result.output
    assert "Console" not in result.output


def test_search_empty_query(project) -> None:
    _init(project)
    result = runner.invoke(app, ["search", "  "])
    assert result.exit_code == 1
    assert "must not be empty" in result.output


def test_search_model_mismatch(project, fake_client) -> None:
    _init(project)
    fake_client.model = "cohere/embed-english-v3.0"
    result = runner.invoke(app, ["search", "deep copy"])
    assert result.exit_code == 1
    assert "mismatch" in result.output


# ---------------------------------------------------------------------------
# idx remove / prune / clean / retry / skip
# ---------------------------------------------------------------------------


def test_remove_with_yes(project) -> None:
    _init(project)
    result = runner.invoke(app, ["remove", "pypi:rich@13.7.0", "--yes"])
    assert result.exit_code == 0
    assert "Removed: pypi:rich@13.7.0" in result.output
    assert "rich" not in runner.invoke(app, ["list"]).output


def test_remove_cancelled(project) -> None:
    _init(project)
    result = runner.invoke(app, ["remove", "pypi:rich@13.7.0"], input="n\n")
    assert result.exit_code == 0
    assert "Cancelled" in result.output
    assert "rich" in runner.invoke(app, ["list"]).output


def test_remove_unknown(project) -> None:
    _init(project)
    result = runner.invoke(app, ["remove", "npm:left-pad@1.3.0", "--yes"])
    assert result.exit_code == 1
    assert "Package not found" in result.output


def test_prune(project) -> None:
    _init(project)
    (project / "requirements.txt").unlink()

    dry = runner.invoke(app, ["prune", "--dry-run"])
    assert dry.exit_code == 0
    assert "pypi:rich@13.7.0" in dry.output
    assert "rich" in runner.invoke(app, ["list"]).output

    result = runner.invoke(app, ["prune", "--yes"])
    assert result.exit_code == 0
    assert "Pruned 1 package(s)" in result.output
    assert "Nothing to prune" in runner.invoke(app, ["prune"]).output


def test_clean(project) -> None:
    _init(project)
    result = runner.invoke(app, ["clean", "--yes"])
    assert result.exit_code == 0
    assert not (project / ".index").exists()
    assert "nothing to clean" in runner.invoke(app, ["clean"]).output


def test_retry_needs_exactly_one_target(project) -> None:
    _init(project)
    assert runner.invoke(app, ["retry"]).exit_code == 1
    assert runner.invoke(app, ["retry", "npm:lodash@4.17.21", "--all"]).exit_code == 1


def test_retry_all(project, registry) -> None:
    registry.errors["pypi:rich@13.7.0"] = FetchError("timed out", "network")
    _init(project)
    result = runner.invoke(app, ["retry", "--all"])
    assert result.exit_code == 0
    assert "Re-queued 1 package(s)" in result.output

    del registry.errors["pypi:rich@13.7.0"]
    update = runner.invoke(app, ["update"])
    assert update.exit_code == 0
    assert "Indexed 1" in update.output


def test_retry_nothing_failed(project) -> None:
    _init(project)
    result = runner.invoke(app, ["retry", "--all"])
    assert result.exit_code == 0
    assert "No failed packages" in result.output


def test_skip_then_retry(project) -> None:
    _init(project)
    result = runner.invoke(app, ["skip", "npm:lodash@4.17.21"])
    assert result.exit_code == 0
    assert "Skipped: npm:lodash@4.17.21" in result.output
    assert "lodash" in runner.invoke(app, ["list", "--status", "skipped"]).output

    retry = runner.invoke(app, ["retry", "npm:lodash@4.17.21"])
    assert retry.exit_code == 0
    assert "lodash" in runner.invoke(app, ["list", "--status", "pending"]).output


def test_skip_unknown(project) -> None:
    _init(project)
    result = runner.invoke(app, ["skip", "npm:left-pad@1.3.0"])
    assert result.exit_code == 1
    assert "Package not found" in result.output


def test_model_change_shown_by_status_and_applied_by_update(project, fake_client) -> None:
    _init(project)
    fake_client.model = "cohere/embed-english-v3.0"

    status = runner.invoke(app, ["status"])
    assert status.exit_code == 0
    assert "Embedding model changed" in status.output
    assert "Pending changes" in status.output

    update = runner.invoke(app, ["update"])
    assert update.exit_code == 0
    assert "Indexed 2" in update.output

    search = runner.invoke(app, ["search", "deep copy"])
    assert search.exit_code == 0
    assert "cloneDeep" in search.output
