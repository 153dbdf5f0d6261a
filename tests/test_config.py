"""Unit tests for GrapeRank configuration."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from graperank.config import (
    ROOT_SCORECARD,
    GrapeRankParams,
    PublicationConfig,
    RatingCurve,
    RatingCurves,
    Settings,
    load_settings,
)
from graperank.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep GRAPERANK_* variables from the host out of these tests."""
    for key in list(os.environ):
        if key.startswith("GRAPERANK_"):
            monkeypatch.delenv(key)


class TestRatingCurves:
    """Tests for RatingCurves model."""

    def test_defaults(self):
        curves = RatingCurves()
        assert curves.follow == RatingCurve(score=1.0, confidence=0.03)
        assert curves.mute == RatingCurve(score=0.0, confidence=0.5)
        assert curves.report == RatingCurve(score=0.0, confidence=0.5)
        assert curves.follow_observer_confidence == 0.5

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            RatingCurve(score=1.0, confidence=1.5)
        with pytest.raises(ValidationError):
            RatingCurve(score=1.0, confidence=-0.1)

    def test_partial_curve_keeps_default_score(self):
        curves = RatingCurves(mute={"confidence": 0.4}, follow={"score": 0.8})
        assert curves.mute == RatingCurve(score=0.0, confidence=0.4)
        assert curves.follow == RatingCurve(score=0.8, confidence=0.03)
        assert curves.report == RatingCurve(score=0.0, confidence=0.5)

    def test_partial_curve_is_still_validated(self):
        with pytest.raises(ValidationError):
            RatingCurves(report={"confidence": 2.0})
        with pytest.raises(ValidationError):
            RatingCurves(mute={"weight": 1.0})


class TestGrapeRankParams:
    """Tests for GrapeRankParams validation."""

    def test_defaults(self):
        params = GrapeRankParams(root_pubkey="r")
        assert params.rigor == 0.5
        assert params.attenuation_factor == 0.85
        assert params.max_iterations == 20
        assert params.convergence_threshold == 1e-4

    @pytest.mark.parametrize("rigor", [0.0, 1.0, -0.2, 1.5])
    def test_rigor_must_be_inside_open_interval(self, rigor):
        with pytest.raises(ValidationError):
            GrapeRankParams(root_pubkey="r", rigor=rigor)

    def test_attenuation_may_be_one(self):
        assert GrapeRankParams(root_pubkey="r", attenuation_factor=1.0).attenuation_factor == 1.0

    def test_attenuation_zero_rejected(self):
        with pytest.raises(ValidationError):
            GrapeRankParams(root_pubkey="r", attenuation_factor=0.0)

    def test_root_required(self):
        with pytest.raises(ValidationError):
            GrapeRankParams(root_pubkey="")

    def test_root_scorecard_constant(self):
        assert ROOT_SCORECARD == (1.0, 1.0, 1.0, 9999.0)


class TestPublicationConfig:
    def test_from_urls_gives_primary_more_connections(self):
        config = PublicationConfig.from_urls(["wss://a", "wss://b", "wss://c"])
        assert [e.max_connections for e in config.endpoints] == [5, 2, 2]
        assert all(e.max_attempts == 3 for e in config.endpoints)
        assert config.processing_window_seconds == 2.0

    def test_requires_an_endpoint(self):
        with pytest.raises(ValidationError):
            PublicationConfig(endpoints=())


class TestSettings:
    """Tests for Settings loaded from the environment."""

    def test_defaults(self):
        settings = Settings()
        assert settings.root_pubkey is None
        assert settings.context == "verifiedUsers"
        assert settings.reconciliation_concurrency == 10
        assert settings.log_format == "json"

    def test_env_override(self):
        env = {
            "GRAPERANK_ROOT_PUBKEY": "abc",
            "GRAPERANK_RIGOR": "0.25",
            "GRAPERANK_RATING_CURVES__MUTE__CONFIDENCE": "0.4",
            "GRAPERANK_RELAY_URLS": '["wss://relay.example.com"]',
        }
        with patch.dict(os.environ, env):
            settings = Settings()
        assert settings.root_pubkey == "abc"
        assert settings.rigor == 0.25
        assert settings.rating_curves.mute.confidence == 0.4
        assert settings.rating_curves.mute.score == 0.0
        assert settings.relay_urls == ["wss://relay.example.com"]

    def test_settings_are_frozen(self):
        settings = Settings()
        with pytest.raises(ValidationError):
            settings.rigor = 0.3

    def test_graperank_params_require_root(self):
        with pytest.raises(ConfigurationError):
            Settings().graperank_params()

    def test_graperank_params(self):
        params = Settings(root_pubkey="abc", max_iterations=5).graperank_params()
        assert params.root_pubkey == "abc"
        assert params.max_iterations == 5

    def test_publication_config_requires_urls(self):
        with pytest.raises(ConfigurationError):
            Settings().publication_config()

    def test_publication_config_override_urls(self):
        settings = Settings(relay_urls=["wss://a"], secondary_max_connections=3)
        config = settings.publication_config(["wss://x", "wss://y"])
        assert [e.url for e in config.endpoints] == ["wss://x", "wss://y"]
        assert config.endpoints[1].max_connections == 3


class TestLoadSettings:
    def test_invalid_rigor_is_configuration_error(self):
        with pytest.raises(ConfigurationError, match="rigor"):
            load_settings(rigor=1.0)

    def test_blank_root_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            load_settings(root_pubkey="   ")

    def test_invalid_env_is_configuration_error(self):
        with patch.dict(os.environ, {"GRAPERANK_RIGOR": "0"}):
            with pytest.raises(ConfigurationError):
                load_settings()

    def test_overrides(self):
        assert load_settings(root_pubkey="abc").root_pubkey == "abc"
