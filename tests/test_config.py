"""Tests for the sketchlink.toml config layer."""

import pytest

from sketchlink.config import (
    CLI_PATH_ENV,
    load_project_config,
    get_config_value,
    set_config_value,
    list_config,
)


class TestLoadProjectConfig:
    def test_load_minimal_toml(self, tmp_path):
        toml = tmp_path / "sketchlink.toml"
        toml.write_text('[serial]\nport = "/dev/ttyUSB0"\nbaud_rate = 9600\n')
        config = load_project_config(tmp_path)
        assert config.serial.port == "/dev/ttyUSB0"
        assert config.serial.baud_rate == 9600

    def test_missing_file_gives_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv(CLI_PATH_ENV, raising=False)
        config = load_project_config(tmp_path)
        assert config.serial.port is None
        assert config.serial.baud_rate == 115200
        assert config.serial.data_bits == 8
        assert config.serial.stop_bits == 1
        assert config.serial.parity == "none"
        assert config.serial.connect_timeout == 5.0
        assert config.toolchain.cli_path == "arduino-cli"
        assert config.build.fqbn is None

    def test_missing_file_raises_when_required(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_project_config(tmp_path, required=True)

    def test_toolchain_and_build_sections(self, tmp_path, monkeypatch):
        monkeypatch.delenv(CLI_PATH_ENV, raising=False)
        toml = tmp_path / "sketchlink.toml"
        toml.write_text(
            '[toolchain]\ncli_path = "/opt/arduino-cli"\ndata_dir = "/tmp/arduino15"\n'
            '[build]\nfqbn = "arduino:avr:uno"\n'
        )
        config = load_project_config(tmp_path)
        assert config.toolchain.cli_path == "/opt/arduino-cli"
        assert config.toolchain.data_dir == "/tmp/arduino15"
        assert config.build.fqbn == "arduino:avr:uno"

    def test_env_overrides_cli_path(self, tmp_path, monkeypatch):
        toml = tmp_path / "sketchlink.toml"
        toml.write_text('[toolchain]\ncli_path = "/opt/arduino-cli"\n')
        monkeypatch.setenv(CLI_PATH_ENV, "/usr/local/bin/arduino-cli")
        config = load_project_config(tmp_path)
        assert config.toolchain.cli_path == "/usr/local/bin/arduino-cli"

    def test_serial_framing(self, tmp_path):
        toml = tmp_path / "sketchlink.toml"
        toml.write_text('[serial]\ndata_bits = 7\nstop_bits = 2\nparity = "even"\nconnect_timeout = 2\n')
        config = load_project_config(tmp_path)
        assert config.serial.data_bits == 7
        assert config.serial.stop_bits == 2
        assert config.serial.parity == "even"
        assert config.serial.connect_timeout == 2.0


class TestGetConfigValue:
    def test_dotted_key(self, tmp_path):
        (tmp_path / "sketchlink.toml").write_text('[serial]\nbaud_rate = 9600\n')
        assert get_config_value(tmp_path, "serial.baud_rate") == 9600

    def test_missing_key_returns_none(self, tmp_path):
        (tmp_path / "sketchlink.toml").write_text('[serial]\nport = "/dev/ttyUSB0"\n')
        assert get_config_value(tmp_path, "build.fqbn") is None

    def test_missing_file_returns_none(self, tmp_path):
        assert get_config_value(tmp_path, "serial.port") is None


class TestSetConfigValue:
    def test_set_creates_file_and_section(self, tmp_path):
        set_config_value(tmp_path, "build.fqbn", "arduino:avr:uno")
        content = (tmp_path / "sketchlink.toml").read_text()
        assert "[build]" in content
        assert 'fqbn = "arduino:avr:uno"' in content

    def test_set_updates_existing(self, tmp_path):
        toml = tmp_path / "sketchlink.toml"
        toml.write_text('[serial]\nbaud_rate = 9600\n')
        set_config_value(tmp_path, "serial.baud_rate", 115200)
        content = toml.read_text()
        assert "115200" in content
        assert "9600" not in content

    def test_set_numeric_coercion(self, tmp_path):
        set_config_value(tmp_path, "serial.baud_rate", "57600")
        set_config_value(tmp_path, "serial.connect_timeout", "2.5")
        content = (tmp_path / "sketchlink.toml").read_text()
        assert "baud_rate = 57600" in content
        assert "connect_timeout = 2.5" in content

    def test_set_inserts_into_existing_section(self, tmp_path):
        toml = tmp_path / "sketchlink.toml"
        toml.write_text('[serial]\nport = "/dev/ttyUSB0"\n\n[build]\nfqbn = "arduino:avr:uno"\n')
        set_config_value(tmp_path, "serial.baud_rate", 9600)
        assert get_config_value(tmp_path, "serial.baud_rate") == 9600
        assert get_config_value(tmp_path, "build.fqbn") == "arduino:avr:uno"

    def test_undotted_key_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            set_config_value(tmp_path, "port", "/dev/ttyUSB0")


class TestListConfig:
    def test_flattens_sections(self, tmp_path):
        (tmp_path / "sketchlink.toml").write_text('[serial]\nport = "/dev/ttyUSB0"\n[build]\nfqbn = "a:b:c"\n')
        assert list_config(tmp_path) == {"serial.port": "/dev/ttyUSB0", "build.fqbn": "a:b:c"}

    def test_missing_file(self, tmp_path):
        assert list_config(tmp_path) == {}
