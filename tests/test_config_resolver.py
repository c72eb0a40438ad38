import pytest

from wa_bot import config as wa_config


@pytest.fixture(autouse=True)
def _fresh_config_cache():
    yield
    # Next caller reloads with the restored environment.
    wa_config.load_config.cache_clear()


def test_resolve_path_absolute_from_relative(tmp_path, monkeypatch):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("database:\n  db_path: data/custom.db\n", encoding="utf-8")
    monkeypatch.setenv("WA_BOT_CONFIG", str(cfg_path))
    monkeypatch.delenv("WA_BOT_DB_PATH", raising=False)
    wa_config.reload_config()

    db_path = wa_config.get_db_path()
    assert db_path.is_absolute()
    assert str(db_path).endswith("data/custom.db")


def test_env_override_db_path(monkeypatch, tmp_path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("database:\n  db_path: data/from_yaml.db\n", encoding="utf-8")
    monkeypatch.setenv("WA_BOT_CONFIG", str(cfg_path))
    monkeypatch.setenv("WA_BOT_DB_PATH", str(tmp_path / "override.db"))
    wa_config.reload_config()

    assert wa_config.get_db_path() == (tmp_path / "override.db").resolve()


def test_missing_sections_fall_back_to_defaults(monkeypatch, tmp_path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("bot:\n  name: Test Bot\n", encoding="utf-8")
    monkeypatch.setenv("WA_BOT_CONFIG", str(cfg_path))
    monkeypatch.delenv("WA_BOT_PREFIX", raising=False)
    monkeypatch.delenv("WA_BOT_SELECTION_TTL", raising=False)
    cfg = wa_config.reload_config()

    assert cfg["bot"]["name"] == "Test Bot"
    assert wa_config.get_prefix(cfg) == "!"
    assert wa_config.get_selection_ttl(cfg) == 600.0
    assert cfg["inbound"]["workers"] == 4


def test_env_overrides_prefix_and_ttl(monkeypatch, tmp_path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("selection:\n  ttl_seconds: 30\n", encoding="utf-8")
    monkeypatch.setenv("WA_BOT_CONFIG", str(cfg_path))
    monkeypatch.setenv("WA_BOT_PREFIX", "/")
    monkeypatch.setenv("WA_BOT_SELECTION_TTL", "120")
    cfg = wa_config.reload_config()

    assert wa_config.get_prefix(cfg) == "/"
    assert wa_config.get_selection_ttl(cfg) == 120.0


def test_invalid_ttl_env_is_ignored(monkeypatch, tmp_path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("selection:\n  ttl_seconds: 45\n", encoding="utf-8")
    monkeypatch.setenv("WA_BOT_CONFIG", str(cfg_path))
    monkeypatch.setenv("WA_BOT_SELECTION_TTL", "soon")
    cfg = wa_config.reload_config()

    assert wa_config.get_selection_ttl(cfg) == 45.0


def test_non_positive_ttl_uses_default():
    assert wa_config.get_selection_ttl({"selection": {"ttl_seconds": 0}}) == 600.0
    assert wa_config.get_selection_ttl({"selection": {"ttl_seconds": "x"}}) == 600.0
