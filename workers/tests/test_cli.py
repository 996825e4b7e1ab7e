# =============================================================================
# workers/tests/test_cli.py - Command-Line Interface Tests
# =============================================================================
# Tests for the settlement-import commands and their exit codes:
#   0 success, 1 usage or input error, 2 validation found blocking errors
# =============================================================================

import json

from settlement_import.cli import main


class TestUsage:
    """Tests for argument handling."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "settlement-import" in capsys.readouterr().out

    def test_missing_file(self, tmp_path, capsys):
        assert main(["validate", str(tmp_path / "missing.csv")]) == 1
        assert "does not exist" in capsys.readouterr().err


class TestProfileCommand:
    """Tests for `profile`."""

    def test_profile_output(self, party_csv, capsys):
        assert main(["profile", str(party_csv)]) == 0
        out = capsys.readouterr().out

        assert "File: parties.csv" in out
        assert "Rows: 3  Columns: 5" in out
        assert "zip_code: postal_code (1.00, excellent) -> individual_parties.zip_code" in out


class TestEstimateCommand:
    """Tests for `estimate`."""

    def test_estimate_output(self, party_csv, capsys):
        assert main(["estimate", str(party_csv), "--sample", "50"]) == 0
        out = capsys.readouterr().out

        assert "Rows: 3" in out
        assert "Estimated validation time: 10 seconds (10000 ms)" in out


class TestValidateCommand:
    """Tests for `validate`."""

    def test_ready_file(self, party_csv, capsys):
        assert main(["validate", str(party_csv)]) == 0
        assert "Ready to deploy" in capsys.readouterr().out

    def test_blocking_errors_exit_two(self, party_csv, capsys):
        assert main(["validate", str(party_csv), "--settings", '{"duplicate_action": "error"}']) == 2
        assert "Not ready to deploy" in capsys.readouterr().out

    def test_settings_file(self, party_csv, tmp_path):
        settings_path = tmp_path / "settings.json"
        settings_path.write_text(json.dumps({"duplicate_action": "error"}))
        assert main(["validate", str(party_csv), "-s", str(settings_path)]) == 2

    def test_invalid_settings(self, party_csv, capsys):
        assert main(["validate", str(party_csv), "--settings", '{"sample_size": 0}']) == 1
        assert "Error:" in capsys.readouterr().err

    def test_json_output(self, party_csv, capsys):
        assert main(["validate", str(party_csv), "--json"]) == 0
        report = json.loads(capsys.readouterr().out)

        assert report["total_rows"] == 3
        assert report["can_deploy"] is True


class TestReportCommand:
    """Tests for `report`."""

    def test_writes_report(self, party_csv, tmp_path):
        output = tmp_path / "report.csv"
        assert main(["report", str(party_csv), "-o", str(output)]) == 0

        text = output.read_text()
        assert text.startswith("Data Import Report")
        assert "Upload Status,ready" in text

    def test_mappings_only(self, party_csv, tmp_path):
        output = tmp_path / "report.csv"
        assert main(["report", str(party_csv), "-o", str(output), "--skip-validation"]) == 0
        assert "Upload Status,mapped" in output.read_text()
