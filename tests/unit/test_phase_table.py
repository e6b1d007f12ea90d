"""Tests for the phase table and phase guidance helpers."""

import pytest

from src.core.exceptions import ConfigurationError
from src.domain.models.phase import PHASE_ORDER, Phase
from src.domain.models.quality import QualityScores
from src.services.state_machine.context_paths import get_nested_value, has_data
from src.services.state_machine.phase_table import (
    PhaseTable,
    calculate_phase_progress,
    get_phase_focus,
    get_phase_transition_message,
)


class TestPhaseTable:
    """Tests for PhaseTable."""

    def test_entries_follow_phase_order(self, phase_table):
        """Entries are ordered by PHASE_ORDER."""
        assert [phase for phase, _ in phase_table] == list(PHASE_ORDER)

    def test_get_config(self, phase_table):
        """Per-phase config is available for every phase."""
        assert phase_table.get_config(Phase.KR_DISCOVERY).timeout_messages == 8
        assert phase_table.get_config(Phase.COMPLETED).timeout_messages == 0

    def test_unknown_phase_raises(self, phase_table):
        """Looking up something that is not a phase is a configuration error."""
        with pytest.raises(ConfigurationError):
            phase_table.get_config("archived")

    def test_from_yaml_missing_file_uses_defaults(self, tmp_path):
        """from_yaml falls back to the built-in table."""
        table = PhaseTable.from_yaml(tmp_path / "absent.yaml")
        assert table.get_config(Phase.VALIDATION).min_data_quality == 60

    def test_next_phase(self, phase_table):
        """The table delegates ordering to the phase helpers."""
        assert phase_table.get_next_phase(Phase.VALIDATION) == Phase.COMPLETED
        assert phase_table.is_terminal(Phase.COMPLETED)


class TestPhaseGuidance:
    """Tests for transition messages, focus and progress."""

    def test_every_phase_has_message_and_focus(self):
        """Each phase has user-facing guidance."""
        for phase in PHASE_ORDER:
            assert get_phase_transition_message(phase)
            assert get_phase_focus(phase)

    def test_progress_without_scores(self):
        """Progress has sensible defaults when nothing is scored."""
        assert calculate_phase_progress(Phase.DISCOVERY, None) == 0.2
        assert calculate_phase_progress(Phase.KR_DISCOVERY, None) == 0.0
        assert calculate_phase_progress(Phase.COMPLETED, None) == 1.0

    def test_discovery_progress_is_capped(self):
        """Discovery progress never reports more than 80%."""
        scores = QualityScores.model_validate({"objective": {"overall": 95}})
        assert calculate_phase_progress(Phase.DISCOVERY, scores) == 0.8

    def test_kr_progress_uses_mean(self):
        """Key result progress is the mean key result score."""
        scores = QualityScores.model_validate({"keyResults": [{"overall": 60}, {"overall": 80}]})
        assert calculate_phase_progress(Phase.KR_DISCOVERY, scores) == pytest.approx(0.7)


class TestContextPaths:
    """Tests for dot-path access into session context."""

    def test_nested_lookup(self):
        """Dot paths resolve through nested mappings."""
        data = {"okrData": {"objective": "Grow", "keyResults": []}}
        assert get_nested_value(data, "okrData.objective") == "Grow"
        assert get_nested_value(data, "okrData.missing") is None
        assert get_nested_value(None, "okrData.objective") is None

    def test_has_data_treats_empty_as_absent(self):
        """Blank strings and empty collections do not count as data."""
        data = {"okrData": {"objective": "   ", "keyResults": [], "count": 0}}
        assert not has_data(data, "okrData.objective")
        assert not has_data(data, "okrData.keyResults")
        assert has_data(data, "okrData.count")
