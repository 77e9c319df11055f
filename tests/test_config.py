from pathlib import Path

from tracklinks.config import (
    DEFAULT_EMBEDDING_MODEL,
    get_env,
    load_config,
    load_runtime_env,
    override_runtime_env,
)


def test_defaults_match_resolution_policy() -> None:
    config = load_config({})

    assert config.resolution.batch_size == 5
    assert config.resolution.track_delay_ms == 2_000
    assert config.resolution.max_candidates == 1_000
    assert config.search.candidate_cap == 500
    assert config.embedding.model == DEFAULT_EMBEDDING_MODEL
    assert config.embedding_index.batch_size == 20
    assert config.link_resolver.user_country == "US"
    assert config.server.port == 8080


def test_values_are_read_and_bounded() -> None:
    config = load_config(
        {
            "SONGLINK_BASE_URL": "http://links.local/v1/",
            "SONGLINK_USER_COUNTRY": "de",
            "RESOLUTION_BATCH_SIZE": "500",
            "RESOLUTION_TRACK_DELAY_MS": "-5",
            "SEARCH_CANDIDATE_CAP": "not-a-number",
            "OPENAI_API_KEY": "sk-test",
        }
    )

    assert config.link_resolver.base_url == "http://links.local/v1"
    assert config.link_resolver.user_country == "DE"
    assert config.resolution.batch_size == 100
    assert config.resolution.track_delay_ms == 0
    assert config.search.candidate_cap == 500
    assert config.embedding.api_key == "sk-test"


def test_env_file_is_layered_under_environment(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("# comment\nLOG_LEVEL=debug\nSONGLINK_API_KEY='from-file'\n", encoding="utf-8")

    env = load_runtime_env(env_file=env_file, base_env={"LOG_LEVEL": "warning"})

    assert env["LOG_LEVEL"] == "warning"
    assert env["SONGLINK_API_KEY"] == "from-file"


def test_override_runtime_env_is_used_by_get_env() -> None:
    override_runtime_env({"SONGLINK_API_KEY": "override"})
    try:
        assert get_env("SONGLINK_API_KEY") == "override"
        assert load_config().link_resolver.api_key == "override"
    finally:
        override_runtime_env(None)
