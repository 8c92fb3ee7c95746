from pathlib import Path

import openbird.config as config_module
from openbird.config import Config


def test_load_prefers_local_config_yaml(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("model:\n  default_model: from-home\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    local_cfg = tmp_path / "config.yaml"
    local_cfg.write_text(
        (
            "model:\n"
            "  base_url: http://gpu-box:11434\n"
            "  default_model: qwen2.5:7b\n"
            "agent:\n"
            "  max_iterations: 5\n"
            "tools:\n"
            "  enabled:\n"
            "    - bash\n"
            "  shell:\n"
            "    kill_grace_seconds: 0.5\n"
        ),
        encoding="utf-8",
    )

    cfg = Config.load()

    assert cfg.model.base_url == "http://gpu-box:11434"
    assert cfg.model.default_model == "qwen2.5:7b"
    assert cfg.agent.max_iterations == 5
    assert cfg.tools.enabled == ["bash"]
    assert cfg.tools.shell.kill_grace_seconds == 0.5


def test_load_falls_back_to_default_path_when_no_local(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("web:\n  port: 8123\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    cfg = Config.load()

    assert cfg.web.port == 8123


def test_defaults_without_any_file(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")
    monkeypatch.delenv("OLLAMA_HOST", raising=False)
    monkeypatch.delenv("BIRD_MODEL", raising=False)
    monkeypatch.delenv("PORT", raising=False)

    cfg = Config.load()

    assert cfg.model.base_url == "http://localhost:11434"
    assert cfg.model.default_model == "llama3.2:latest"
    assert cfg.agent.max_iterations == 20
    assert cfg.agent.format_retries == 0
    assert cfg.tools.enabled == ["bash", "read_file", "write_file"]
    assert cfg.web.port == 3000


def test_legacy_environment_variables_are_honoured(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")
    monkeypatch.setenv("OLLAMA_HOST", "http://remote:11434")
    monkeypatch.setenv("BIRD_MODEL", "mistral:latest")
    monkeypatch.setenv("PORT", "4100")

    cfg = Config.load()

    assert cfg.model.base_url == "http://remote:11434"
    assert cfg.model.default_model == "mistral:latest"
    assert cfg.web.port == 4100


def test_prefixed_environment_overrides(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")
    monkeypatch.setenv("OPENBIRD_AGENT__MAX_ITERATIONS", "7")

    cfg = Config.load()

    assert cfg.agent.max_iterations == 7


def test_explicit_path_and_shell_cwd(tmp_path: Path):
    cfg_path = tmp_path / "custom.yaml"
    cfg_path.write_text(f"tools:\n  shell:\n    cwd: {tmp_path}\n", encoding="utf-8")

    cfg = Config.load(cfg_path)

    assert cfg.resolved_shell_cwd() == tmp_path.resolve()
