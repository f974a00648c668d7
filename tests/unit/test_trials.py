"""
Unit tests for trial definition expansion.
"""

import pytest

from cbmsim.core.trials import trial_spec_from_params, translate_parsed_trials, trials_from_dict
from cbmsim.errors import ConfigurationError

TRIALS = {
    "cs_only": {"use_cs": "1", "cs_onset": "2000", "cs_len": "500", "use_us": "0", "us_onset": "0"},
    "paired": {
        "use_cs": "true",
        "cs_onset": "2000",
        "cs_len": "500",
        "cs_percent": "50",
        "use_us": "1",
        "us_onset": "2500",
    },
}


@pytest.mark.unit
class TestTrialSpecFromParams:
    """Test parsing of one trial definition."""

    def test_fields_parsed(self):
        spec = trial_spec_from_params("paired", TRIALS["paired"])
        assert spec.use_cs and spec.use_us
        assert (spec.cs_onset, spec.cs_offset, spec.cs_length) == (2000, 2500, 500)
        assert spec.cs_percent == 50.0
        assert spec.us_onset == 2500

    def test_cs_percent_defaults_to_always(self):
        assert trial_spec_from_params("cs_only", TRIALS["cs_only"]).cs_percent == 100.0

    def test_missing_key_reported(self):
        params = dict(TRIALS["cs_only"])
        del params["cs_len"]
        with pytest.raises(ConfigurationError, match="cs_len"):
            trial_spec_from_params("cs_only", params)

    def test_bad_values_reported(self):
        with pytest.raises(ConfigurationError, match="cs_only"):
            trial_spec_from_params("cs_only", dict(TRIALS["cs_only"], use_cs="maybe"))
        with pytest.raises(ConfigurationError, match="cs_percent"):
            trial_spec_from_params("cs_only", dict(TRIALS["cs_only"], cs_percent="150"))


@pytest.mark.unit
class TestTranslateParsedTrials:
    """Test session expansion."""

    def test_blocks_and_trials_expand_in_order(self):
        blocks = {"acquisition": [("paired", "2"), ("cs_only", 1)]}
        session = [("acquisition", 2), ("cs_only", "1")]
        trials = translate_parsed_trials(TRIALS, blocks, session)
        assert [t.name for t in trials] == [
            "paired",
            "paired",
            "cs_only",
            "paired",
            "paired",
            "cs_only",
            "cs_only",
        ]

    def test_zero_count_skips_entry(self):
        trials = translate_parsed_trials(TRIALS, {}, [("paired", 0), ("cs_only", 1)])
        assert [t.name for t in trials] == ["cs_only"]

    def test_unknown_session_entry(self):
        with pytest.raises(ConfigurationError, match="extinction"):
            translate_parsed_trials(TRIALS, {}, [("extinction", 1)])

    def test_unknown_trial_in_block(self):
        with pytest.raises(ConfigurationError, match="us_only"):
            translate_parsed_trials(TRIALS, {"b": [("us_only", 1)]}, [("b", 1)])

    def test_bad_counts(self):
        with pytest.raises(ConfigurationError, match="not an integer"):
            translate_parsed_trials(TRIALS, {}, [("paired", "many")])
        with pytest.raises(ConfigurationError, match="non-negative"):
            translate_parsed_trials(TRIALS, {}, [("paired", -1)])

    def test_from_dict(self):
        data = {
            "trials": TRIALS,
            "blocks": {"b": [["paired", 3]]},
            "session": [["b", 1]],
        }
        assert len(trials_from_dict(data)) == 3

    def test_from_dict_rejects_unknown_sections(self):
        with pytest.raises(ConfigurationError, match="sessions"):
            trials_from_dict({"trials": TRIALS, "sessions": []})
