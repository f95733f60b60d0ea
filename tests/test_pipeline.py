"""
End-to-end verification runs against in-memory replicas.
"""

import json
from unittest.mock import patch

import pytest

from conftest import SIG_1, FakeIndexer, FakeNetwork, make_tables
from indexer_parity.config import build_config
from indexer_parity.extractors.indexer import FetchResult
from indexer_parity.pipeline import EXIT_ERROR, EXIT_FAIL, EXIT_PASS, finalize_report, main, run_verification
from indexer_parity.transformers.coverage import IndexerReport

URL_1 = "http://idx1.test/rest/v1"
URL_2 = "http://idx2.test/rest/v1"


@pytest.fixture
def run(tmp_path, capsys):
    """Run main() against the given replicas; returns (exit code, report, summary)."""
    def invoke(indexers, *extra_args):
        network = FakeNetwork(indexers)
        output = tmp_path / "out" / "report.json"
        argv = [
            "--config", str(tmp_path / "absent.yaml"),
            "--indexers", ",".join(f"http://{host}/rest/v1" for host in indexers),
            "--allow-any-count",
            "--output", str(output),
            "--page-size", "2",
            *extra_args,
        ]
        code = main(argv, session_factory=network.session_factory)
        out = capsys.readouterr().out.strip().splitlines()
        report = json.loads(output.read_text()) if output.exists() else None
        summary = json.loads(out[-1]) if out and out[-1].startswith("{") else None
        return code, report, summary
    return invoke


def _minimal(score):
    empty = {name: [] for name in ("feedback_responses", "revocations", "collections", "metadata")}
    return dict(
        empty,
        agents=[{"asset": "A1", "owner": "O1"}],
        feedbacks=[{"asset": "A1", "client_address": "C1", "feedback_index": 0, "score": score, "tx_signature": SIG_1}],
    )


class TestMain:

    def test_identical_replicas_pass(self, run):
        code, report, summary = run({"idx1.test": FakeIndexer(make_tables()), "idx2.test": FakeIndexer(make_tables())})
        assert code == EXIT_PASS
        assert report["verdict"]["pass"] is True
        assert report["mismatches"] == []
        assert summary["pass"] is True
        assert summary["mismatchCount"] == 0
        assert summary["failingIndexers"] == 0
        assert report["indexers"][0]["coverage"]["agents"]["pages"] == 2

    def test_score_difference_fails(self, run):
        code, report, summary = run({"idx1.test": FakeIndexer(_minimal(90)), "idx2.test": FakeIndexer(_minimal(91))})
        assert code == EXIT_FAIL
        assert report["verdict"]["pass"] is False
        mismatches = [m for m in report["mismatches"] if m["table"] == "feedbacks"]
        assert len(mismatches) == 1
        assert mismatches[0]["kind"] == "canonical"
        assert mismatches[0]["payloadDiffCount"] == 1
        assert [m for m in report["mismatches"] if m["table"] == "agents"] == []
        assert summary["pass"] is False

    def test_orphaned_rows_are_excluded_from_parity(self, run):
        with_orphan = make_tables()
        with_orphan["agents"].append({"asset": "asset-z", "agent_id": 99, "status": "ORPHANED"})
        code, report, _ = run({
            "idx1.test": FakeIndexer(with_orphan),
            "idx2.test": FakeIndexer(make_tables(), orphan_flag=False),
        })
        assert code == EXIT_PASS
        left, right = report["indexers"]
        assert left["coverage"]["agents"]["orphanedCount"] == 1
        assert left["coverage"]["agents"]["count"] == 2
        assert right["coverage"]["agents"]["includeOrphaned"]["fallbackToPlain"] is True

    def test_unreachable_replica(self, run):
        tables = make_tables()
        code, report, _ = run({"idx1.test": FakeIndexer(tables), "idx2.test": None})
        assert code == EXIT_FAIL
        failing = report["verdict"]["failingIndexers"]
        assert failing[0]["baseUrl"] == URL_2
        assert failing[0]["problems"][0] == "unavailable"
        assert report["indexers"][1]["errors"][0]["message"] == "health_http_ERR"
        assert {m["kind"] for m in report["mismatches"]} == {"support"}

    def test_unhealthy_replica_is_not_fetched(self, run):
        code, report, _ = run({"idx1.test": FakeIndexer(make_tables()), "idx2.test": FakeIndexer(make_tables(), healthy=False)})
        assert code == EXIT_FAIL
        assert report["indexers"][1]["available"] is False
        assert report["indexers"][1]["coverage"]["agents"]["pages"] == 0

    def test_failing_endpoint(self, run):
        code, report, _ = run({
            "idx1.test": FakeIndexer(make_tables()),
            "idx2.test": FakeIndexer(make_tables(), failing={"metadata": 500}),
        })
        assert code == EXIT_FAIL
        problems = report["verdict"]["failingIndexers"][0]["problems"]
        assert "metadata:unsupported" in problems
        assert "metadata:fetch_error" in problems

    def test_malformed_rows_fail_only_that_replica(self, run):
        bad = make_tables()
        bad["feedbacks"].extend([None, 7])
        bad["agents"].append("garbage")
        code, report, summary = run({"idx1.test": FakeIndexer(make_tables()), "idx2.test": FakeIndexer(bad)})
        assert code == EXIT_FAIL
        assert report is not None
        assert summary["pass"] is False
        failing = report["verdict"]["failingIndexers"]
        assert [entry["baseUrl"] for entry in failing] == [URL_2]
        assert "id_invariants:agentsGlobalId,feedbackIndexPerAsset,feedbackIdPerAsset" in failing[0]["problems"]
        assert report["indexers"][1]["coverage"]["feedbacks"]["canonical"]["missingKeyCount"] == 2

    def test_analysis_failure_is_recorded_on_the_replica(self, run):
        with patch("indexer_parity.pipeline.evaluate_tx_signature_checks", side_effect=RuntimeError("boom")):
            code, report, _ = run({"idx1.test": FakeIndexer(make_tables()), "idx2.test": FakeIndexer(make_tables())})
        assert code == EXIT_FAIL
        errors = report["indexers"][0]["errors"]
        assert errors[-1]["kind"] == "internal"
        assert "boom" in errors[-1]["message"]
        assert "tx_signature:not_computed" in report["verdict"]["failingIndexers"][0]["problems"]

    def test_asset_scoped_run(self, run, tmp_path):
        assets = tmp_path / "assets.txt"
        assets.write_text("asset-a\nasset-missing\n")
        code, report, _ = run(
            {"idx1.test": FakeIndexer(make_tables()), "idx2.test": FakeIndexer(make_tables())},
            "--assets-file", str(assets),
        )
        assert code == EXIT_FAIL
        assert report["config"]["requiredTables"] == ["agents", "feedbacks", "feedback_responses", "revocations"]
        assert set(report["coverage"]) == {"agents", "feedbacks", "feedback_responses", "revocations"}
        first = report["indexers"][0]
        assert first["missingAssets"] == ["asset-missing"]
        assert first["coverage"]["agents"]["count"] == 1
        assert first["idInvariants"]["checks"]["agentsGlobalId"]["skipped"] is True
        assert report["verdict"]["failingIndexers"][0]["problems"] == ["missing_assets"]
        assert report["mismatches"] == []

    def test_strict_count_is_a_config_error(self, tmp_path, capsys):
        code = main(["--config", str(tmp_path / "absent.yaml"), "--indexers", URL_1, "--output", str(tmp_path / "r.json")])
        assert code == EXIT_ERROR
        assert "Configuration error" in capsys.readouterr().err
        assert not (tmp_path / "r.json").exists()

    def test_bad_yaml_is_a_config_error(self, tmp_path):
        config = tmp_path / "verify.yaml"
        config.write_text("verify: [unclosed\n")
        assert main(["--config", str(config)]) == EXIT_ERROR

    def test_yaml_settings_are_used(self, tmp_path, monkeypatch):
        monkeypatch.setenv("INDEXER_URLS", f"{URL_1},{URL_2}")
        config = tmp_path / "verify.yaml"
        config.write_text(
            'verify:\n  indexers: "${INDEXER_URLS}"\n  expected_indexers: 2\n  page_size: 5\n'
        )
        output = tmp_path / "report.json"
        network = FakeNetwork({"idx1.test": FakeIndexer(make_tables()), "idx2.test": FakeIndexer(make_tables())})
        assert main(["--config", str(config), "--output", str(output)], session_factory=network.session_factory) == EXIT_PASS
        assert json.loads(output.read_text())["config"]["page_size"] == 5


class TestRunVerification:

    def test_report_shape(self):
        network = FakeNetwork({"idx1.test": FakeIndexer(make_tables()), "idx2.test": FakeIndexer(make_tables())})
        config = build_config({}, {"indexers": f"{URL_1},{URL_2}", "strict": False})
        report = run_verification(config, network.session_factory)
        assert set(report) == {"generatedAt", "config", "coverage", "indexers", "mismatches", "verdict"}
        assert report["config"]["indexers"] == [URL_1, URL_2]
        assert report["coverage"]["collections"]["allEqualPayloadHash"] is True
        assert report["indexers"][0]["root"] == "http://idx1.test"
        assert report["indexers"][0]["stats"] == {"status": "ok"}
        assert "missingAssets" not in report["indexers"][0]
        # one client per task, all closed
        assert network.sessions and all(session.closed for session in network.sessions)


class TestFinalizeReport:

    def test_malformed_agent_rows_in_asset_scoped_run(self, tmp_path):
        assets = tmp_path / "assets.txt"
        assets.write_text("asset-a\nasset-b\n")
        config = build_config({}, {"indexers": URL_1, "strict": False, "assets_file": str(assets)})
        fetched = {
            table: FetchResult(entity=table, endpoint=table, supported=True, pages=1)
            for table in ("agents", "feedbacks", "feedback_responses", "revocations")
        }
        fetched["agents"].rows = [None, "garbage", {"asset": "asset-a", "agent_id": 0}]
        report = finalize_report(IndexerReport(base_url=URL_1, root=URL_1, available=True), fetched, config)
        assert report.missing_assets == ["asset-b"]
        assert report.coverage["agents"].count == 3
        assert report.id_invariants.checks["agentsGlobalId"].skipped is True
