import pytest

from assetlock.config import (
    DEFAULT_LOCK_NAME,
    DEFAULT_LOCK_URI,
    DEFAULT_STATUS_URI,
    DEFAULT_UNLOCK_URI,
    DEFAULT_WAIT_TIME_MS,
    ENV_VARIABLE_TEST_RESOURCES_DIR,
    ENV_VARIABLE_TEST_SETTINGS_DIR,
    LockServiceConfig,
    ManagerSettings,
    SharedProperties,
)
from assetlock.errors import ConfigurationError
from assetlock.types import VerificationMode


# --- LockServiceConfig ---

def test_defaults_apply():
    config = LockServiceConfig.from_mapping({"endpoint_url": " http://locks.test/ "})

    assert config.endpoint_url == "http://locks.test"
    assert config.lock_name == DEFAULT_LOCK_NAME == "n8_etcd"
    assert config.ttl == 0
    assert config.wait_time == DEFAULT_WAIT_TIME_MS == 5000
    assert config.wait_timeout == 0
    assert config.status_uri == DEFAULT_STATUS_URI
    assert config.lock_uri == DEFAULT_LOCK_URI
    assert config.unlock_uri == DEFAULT_UNLOCK_URI
    assert config.verification == VerificationMode.STATUS


def test_blank_values_fall_back_to_defaults():
    config = LockServiceConfig.from_mapping(
        {"endpoint_url": "http://locks.test", "lock_name": "  ", "ttl": "", "wait_time": "250"}
    )

    assert config.lock_name == DEFAULT_LOCK_NAME
    assert config.ttl == 0
    assert config.wait_time == 250


def test_missing_endpoint_is_rejected():
    with pytest.raises(ConfigurationError):
        LockServiceConfig.from_mapping({"lock_name": "x"})


@pytest.mark.parametrize(
    "values",
    [
        {"ttl": "-1"},
        {"wait_timeout": "-5"},
        {"wait_time": "0"},
        {"verification": "html"},
        {"verification": "carrier-pigeon"},
    ],
)
def test_invalid_values_are_rejected(values):
    with pytest.raises(ConfigurationError):
        LockServiceConfig.from_mapping({"endpoint_url": "http://locks.test", **values})


def test_html_verification_with_resource_name():
    config = LockServiceConfig.from_mapping(
        {"endpoint_url": "http://locks.test", "verification": "html", "resource_name": "lab"}
    )

    assert config.verification == VerificationMode.HTML


def test_from_data_file(tmp_path, write_data_file):
    path = write_data_file(
        tmp_path,
        "resourcelock.csv",
        "endpoint_url,http://jenkins.local:8080",
        "lock_name,bench",
        "ttl,60000",
        "wait_timeout,120000",
    )

    config = LockServiceConfig.from_data_file(path)

    assert config.endpoint_url == "http://jenkins.local:8080"
    assert config.lock_name == "bench"
    assert config.ttl == 60000
    assert config.wait_timeout == 120000


def test_from_missing_data_file(tmp_path):
    with pytest.raises(ConfigurationError):
        LockServiceConfig.from_data_file(tmp_path / "resourcelock.csv")


# --- ManagerSettings ---

def test_settings_need_a_directory():
    with pytest.raises(ValueError):
        ManagerSettings()


def test_settings_directory_and_prefix():
    settings = ManagerSettings(resources_dir="/data/resources", settings_dir="lab1")

    assert str(settings.directory) == "/data/resources/lab1"
    assert settings.directories == ["/data/resources/lab1"]
    assert settings.lock_name_prefix == "lab1-"


def test_settings_without_settings_dir_have_no_prefix():
    settings = ManagerSettings(resources_dir="/data/resources")

    assert str(settings.directory) == "/data/resources"
    assert settings.lock_name_prefix == ""


def test_environment_overrides_arguments():
    environ = {
        ENV_VARIABLE_TEST_RESOURCES_DIR: "/env/resources",
        ENV_VARIABLE_TEST_SETTINGS_DIR: "lab9",
    }

    settings = ManagerSettings.from_environment("/arg/resources", "lab1", environ=environ)

    assert settings.resources_dir == "/env/resources"
    assert settings.settings_dir == "lab9"
    assert settings.lock_name_prefix == "lab9-"


def test_environment_falls_back_to_arguments():
    settings = ManagerSettings.from_environment("/arg/resources", "lab1", environ={})

    assert settings.resources_dir == "/arg/resources"
    assert settings.settings_dir == "lab1"


# --- SharedProperties ---

def test_shared_properties_merge_data_file(tmp_path, write_data_file):
    path = write_data_file(tmp_path, "deviceA.csv", "mac,AA:BB:CC", "ip,10.0.0.7")
    properties = SharedProperties({"ip": "old", "region": "eu"})

    properties.add_properties(path)

    assert properties.as_dict() == {"ip": "10.0.0.7", "region": "eu", "mac": "AA:BB:CC"}
    assert "mac" in properties
    assert properties.get("missing", "x") == "x"


def test_shared_properties_missing_file_raises(tmp_path):
    with pytest.raises(OSError):
        SharedProperties().add_properties(tmp_path / "missing.csv")
