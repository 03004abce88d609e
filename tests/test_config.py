import pytest
from pydantic import ValidationError

from netorch.config import Settings


def test_transport_is_normalized():
    assert Settings(device_transport=" RouterOS ").device_transport == "routeros"


@pytest.mark.parametrize(
    "overrides",
    [
        {"device_transport": "telnet"},
        {"timezone": "Mars/Olympus"},
        {"discovery_ranges": "10.0.0.0/24, not-a-network"},
        {"upload_ratio": 0},
        {"upload_ratio": 1.5},
        {"compliance_tolerance": 0.9},
    ],
)
def test_invalid_settings_raise_value_error(overrides):
    with pytest.raises(ValueError):
        Settings(**overrides)


def test_discovery_networks_split_commas_and_newlines():
    settings = Settings(discovery_ranges="10.0.0.0/30,\n192.168.1.1/32, ")

    assert settings.discovery_networks() == ["10.0.0.0/30", "192.168.1.1/32"]


def test_settings_are_frozen():
    settings = Settings()
    with pytest.raises(ValidationError):
        settings.upload_ratio = 0.5
