"""
Tests for stackman.config – yaml settings rendered with jinja2 and
STACKMAN_* environment overrides.
"""

import pytest
import yaml

from stackman import config
from stackman.config import StackmanSettings, load_settings, settings_from_mapping
from stackman.exceptions import PreconditionError


@pytest.fixture
def no_default_file(tmp_path, monkeypatch):
    monkeypatch.setattr(config, 'DEFAULT_CONFIG_PATH', str(tmp_path / 'absent.yml'))


class TestLoadSettings:

    def test_defaults_without_a_file(self, no_default_file):
        settings = load_settings(environ={})

        assert settings == StackmanSettings()
        assert settings.poll_interval == 10.0
        assert settings.poll_max_attempts == 30
        assert settings.settle_delay == 10.0
        assert settings.default_volume_size == 10
        assert settings.default_disk_bus == 'scsi'
        assert settings.warmup_prefixes == ('/mnt/vmdk/',)

    def test_explicit_missing_file_is_an_error(self, tmp_path):
        with pytest.raises(PreconditionError, match="does not exist"):
            load_settings(str(tmp_path / 'nope.yml'), environ={})

    def test_file_is_rendered_with_jinja(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STACKMAN_TEST_HOST", "cloud.example.com")
        conf = tmp_path / 'stackman.yml'
        conf.write_text(
            'host: {{ env_required("STACKMAN_TEST_HOST") }}\n'
            'project: {{ env("STACKMAN_TEST_PROJECT", default="admin") }}\n'
            'networks:\n'
            '  - prod-net\n'
            '  - backup-net\n'
            'poll_interval: 5\n'
            'verify_tls: false\n'
            'not_a_setting: 1\n'
        )

        settings = load_settings(str(conf), environ={})

        assert settings.host == 'cloud.example.com'
        assert settings.project == 'admin'
        assert settings.networks == ('prod-net', 'backup-net')
        assert settings.poll_interval == 5.0
        assert settings.verify_tls is False

    def test_missing_required_variable(self, tmp_path, monkeypatch):
        monkeypatch.delenv("STACKMAN_TEST_HOST", raising=False)
        conf = tmp_path / 'stackman.yml'
        conf.write_text('host: {{ env_required("STACKMAN_TEST_HOST") }}\n')

        with pytest.raises(PreconditionError, match="STACKMAN_TEST_HOST"):
            load_settings(str(conf), environ={})

    def test_environment_overrides(self, tmp_path):
        conf = tmp_path / 'stackman.yml'
        conf.write_text('host: from-file\npoll_interval: 5\n')

        settings = load_settings(str(conf), environ={
            'STACKMAN_HOST': 'from-env',
            'STACKMAN_POLL_MAX_ATTEMPTS': '3',
            'STACKMAN_NETWORKS': 'a, b',
            'STACKMAN_UNKNOWN': 'x',
        })

        assert settings.host == 'from-env'
        assert settings.poll_interval == 5.0
        assert settings.poll_max_attempts == 3
        assert settings.networks == ('a', 'b')


class TestSettingsFromMapping:

    def test_invalid_number(self):
        with pytest.raises(PreconditionError, match="poll_interval"):
            settings_from_mapping({'poll_interval': 'soon'})

    def test_unquoted_microversion_is_refused(self):
        raw = yaml.safe_load("compute_api_version: 2.10\n")

        with pytest.raises(PreconditionError, match="quote it"):
            settings_from_mapping(raw)

    def test_quoted_microversion_is_kept(self):
        raw = yaml.safe_load('compute_api_version: "2.10"\n')
        assert settings_from_mapping(raw).compute_api_version == '2.10'

    def test_microversion_from_the_environment(self, no_default_file):
        settings = load_settings(environ={'STACKMAN_COMPUTE_API_VERSION': '2.60'})
        assert settings.compute_api_version == '2.60'

    def test_override_ignores_none(self):
        settings = StackmanSettings(host='a').override(host=None, project='p')
        assert settings.host == 'a'
        assert settings.project == 'p'
