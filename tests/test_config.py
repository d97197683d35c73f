import pytest

from search_crawler.utils.config import ConfigManager, DEFAULT_TAG_SCORES, load_config


class TestConfig:
    def test_defaults(self):
        config = load_config(None, environ={})

        assert config.crawler.threads == 8
        assert config.crawler.max_pages == 5000
        assert config.crawler.fold_https is False
        assert config.indexer.tag_scores == DEFAULT_TAG_SCORES
        assert config.snapshot.directory == 'data/snapshot'

    def test_partial_yaml(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('crawler:\n  threads: 3\n  max_per_host: 7\nstorage:\n  type: memory\n')

        config = load_config(str(path), environ={})

        assert config.crawler.threads == 3
        assert config.crawler.max_per_host == 7
        assert config.crawler.max_pages == 5000
        assert config.storage.type == 'memory'

    def test_env_overrides(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('crawler:\n  threads: 3\n')
        environ = {
            'THREADS': '12',
            'MAX_PAGES': '50',
            'STRICT_ON_ROBOTS_FAILURE': 'true',
            'SNAPSHOT_INTERVAL_S': '2.5',
            'USER_AGENT': 'EnvBot/2.0',
            'LOG_LEVEL': 'DEBUG',
            'MAX_PER_HOST': '',
        }

        config = load_config(str(path), environ=environ)

        assert config.crawler.threads == 12
        assert config.crawler.max_pages == 50
        assert config.crawler.max_per_host == 100
        assert config.crawler.strict_on_robots_failure is True
        assert config.snapshot.interval_s == 2.5
        assert config.crawler.user_agent == 'EnvBot/2.0'
        assert config.logging.level == 'DEBUG'

    def test_bad_env_value(self):
        with pytest.raises(ValueError, match='THREADS'):
            load_config(None, environ={'THREADS': 'many'})

    @pytest.mark.parametrize('environ', [
        {'THREADS': '0'},
        {'MAX_PAGES': '-1'},
        {'POLL_WAIT_MS': '0'},
        {'FETCH_TIMEOUT_MS': '0'},
    ])
    def test_validation(self, environ):
        with pytest.raises(ValueError):
            load_config(None, environ=environ)

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('crawler:\n  max_depth: 3\n')

        with pytest.raises(ValueError, match='max_depth'):
            load_config(str(path), environ={})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / 'nope.yaml'), environ={})

    def test_config_property_requires_load(self):
        manager = ConfigManager(None, environ={})
        with pytest.raises(ValueError):
            manager.config
        manager.load_config()
        assert manager.config.crawler.threads == 8
