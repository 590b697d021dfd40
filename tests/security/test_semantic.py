"""Tests for semantic threat analysis."""

import pytest

from agentic_guard.security import CombinationRule, SemanticAnalyzer
from agentic_guard.security.semantic import THREAT_PATTERNS


@pytest.fixture
def analyzer() -> SemanticAnalyzer:
    return SemanticAnalyzer()


class TestThreatCategories:
    """Tests for category patterns applied to commands and parameters."""

    def test_benign_command(self, analyzer):
        result = analyzer.analyze("Get-Process -Name w3wp")

        assert result.allowed
        assert result.reason is None

    def test_categories(self, analyzer):
        assert set(analyzer.categories) == set(THREAT_PATTERNS)
        assert len(analyzer.categories) == 8

    @pytest.mark.parametrize(
        "command,category",
        [
            ("Invoke-Command -ComputerName server01 -ScriptBlock {hostname}", "lateral_movement"),
            ("Format-Volume -DriveLetter D", "destructive"),
            ("Start-Process runas", "privilege_escalation"),
            ("schtasks /create /tn updater", "persistence"),
            ("[Convert]::FromBase64String($x)", "obfuscation"),
        ],
    )
    def test_command_categories(self, analyzer, command, category):
        result = analyzer.analyze(command)

        assert not result.allowed
        assert result.category == category
        assert result.reason == f"Command contains {category.replace('_', ' ')} indicators"

    def test_localhost_is_not_lateral_movement(self, analyzer):
        assert analyzer.analyze("Get-Service -ComputerName localhost").allowed

    def test_case_insensitive(self, analyzer):
        assert analyzer.analyze("format-volume -driveletter d").category == "destructive"

    def test_parameter_values_checked(self, analyzer):
        result = analyzer.analyze("Write-Output", {"Message": "sekurlsa::logonpasswords"})

        assert not result.allowed
        assert result.category == "credential_theft"
        assert result.reason == "Parameter 'Message' contains credential theft indicators"

    def test_none_parameter_skipped(self, analyzer):
        assert analyzer.analyze("Get-Process", {"Name": None}).allowed


class TestCombinations:
    """Tests for co-occurrence heuristics."""

    def test_credential_exfiltration(self, analyzer):
        result = analyzer.analyze("Export-Clixml -Path c.xml; Send-MailMessage -To ops@example.com")

        assert not result.allowed
        assert result.category == "combination"
        assert result.reason == "Detected credential exfiltration pattern"

    def test_custom_rules_replace_defaults(self):
        analyzer = SemanticAnalyzer([CombinationRule("pair", "Detected pair", ["foo"], ["bar"])])

        assert analyzer.analyze("Get-Item foo bar").reason == "Detected pair"
        assert analyzer.analyze("Export-Clixml c.xml; Send-MailMessage").allowed

    def test_no_rules(self):
        analyzer = SemanticAnalyzer([])

        assert analyzer.analyze("Export-Clixml c.xml; Send-MailMessage").allowed

    def test_one_side_only_is_allowed(self, analyzer):
        assert analyzer.analyze("Export-Clixml -Path c.xml").allowed
