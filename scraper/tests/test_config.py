import pytest

from advault_scraper.config import Settings
from advault_scraper.errors import ConfigurationError

FULL_ENV = {
    "OXYLABS_USERNAME": "user",
    "OXYLABS_PASSWORD": "secret",
    "DB_HOST": "10.0.0.5",
    "DB_PORT": "6543",
    "DB_PASSWORD": "pw",
    "GCS_BUCKET": "ads-bucket",
}


def test_defaults_apply_when_env_is_empty():
    settings = Settings.from_env({})
    assert settings.submit_max_attempts == 120
    assert settings.submit_initial_delay_s == 2.0
    assert settings.submit_max_delay_s == 30.0
    assert settings.max_ads == 5
    assert settings.gcs_bucket == "ad-renderings"
    assert settings.local_extraction is False
    assert settings.reprocess_on_error is True


def test_env_values_are_parsed():
    settings = Settings.from_env({**FULL_ENV, "ADVAULT_MAX_ADS": "3", "ADVAULT_LOCAL_EXTRACTION": "yes"})
    assert settings.db_port == 6543
    assert settings.max_ads == 3
    assert settings.local_extraction is True
    settings.validate(provider=True, database=True, storage=True)


def test_bad_number_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match="DB_PORT"):
        Settings.from_env({"DB_PORT": "five"})


def test_validate_lists_every_missing_requirement():
    with pytest.raises(ConfigurationError) as info:
        Settings.from_env({}).validate(provider=True, database=True)
    message = str(info.value)
    assert "OXYLABS_USERNAME" in message
    assert "OXYLABS_PASSWORD" in message
    assert "DB_PASSWORD" in message


def test_validate_only_checks_requested_capabilities():
    Settings.from_env({"DB_PASSWORD": "pw", "DB_SQL_CONN": "proj:region:inst"}).validate(database=True)


def test_overrides_ignore_none():
    settings = Settings.from_env({}).with_overrides(max_ads=2, output_dir=None)
    assert settings.max_ads == 2
    assert settings.output_dir == "scraper-results"
