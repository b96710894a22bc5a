import pytest
import yaml

from docsh.docsh_config import DEFAULTS, Config, default_config_path
from docsh.docsh_datatypes import ConfigError


def test_defaults():
    config = Config()
    assert config.get("editor") is None
    assert config.get("rewrite") is True
    assert config.get("show-none") is False
    assert config.get("batch-size") == 20


def test_set_returns_confirmation():
    config = Config()
    assert config.set("editor", "vim") == "Setting 'editor' has been changed"
    assert config.get("editor") == "vim"


def test_unknown_keys_are_rejected():
    config = Config()
    with pytest.raises(KeyError):
        config.get("colour")
    with pytest.raises(KeyError):
        config.set("colour", "blue")


def test_load_missing_file_gives_defaults(tmp_path):
    config = Config.load(tmp_path / "nope.yaml")
    assert config.get("editor") is None
    assert config.path == tmp_path / "nope.yaml"


def test_load_yaml_ignores_unknown_keys(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("editor: nano\nbatch-size: 5\ncolour: blue\n", encoding="utf-8")
    config = Config.load(path)
    assert config.get("editor") == "nano"
    assert config.get("batch-size") == 5
    with pytest.raises(KeyError):
        config.get("colour")


def test_load_empty_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")
    assert Config.load(path).get("rewrite") is True


@pytest.mark.parametrize("text", ["editor: [unclosed\n", "- just\n- a list\n"])
def test_load_invalid_file(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError):
        Config.load(path)


def test_save_writes_only_changed_values(tmp_path):
    path = tmp_path / "sub" / "config.yaml"
    config = Config(path=path)
    config.set("editor", "code")
    config.set("rewrite", True)
    config.save()
    assert yaml.safe_load(path.read_text(encoding="utf-8")) == {"editor": "code"}
    assert Config.load(path).get("editor") == "code"


def test_save_without_path():
    with pytest.raises(ConfigError):
        Config().save()


def test_config_path_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("DOCSH_CONFIG", str(tmp_path / "alt.yaml"))
    assert default_config_path() == tmp_path / "alt.yaml"
    monkeypatch.delenv("DOCSH_CONFIG")
    assert default_config_path().name == "config.yaml"


def test_debug_trace_goes_to_stderr(monkeypatch, capsys):
    from docsh.docsh_config import dbg
    dbg("hidden")
    assert capsys.readouterr().err == ""
    monkeypatch.setenv("DOCSH_DEBUG", "1")
    dbg("shown", 1)
    assert capsys.readouterr().err == "[DBG] shown 1\n"


def test_defaults_are_not_mutated():
    Config().set("editor", "vim")
    assert DEFAULTS["editor"] is None
