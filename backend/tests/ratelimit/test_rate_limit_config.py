"""
Tests for environment-driven rate limit configuration.
"""

import pytest

from tailor_service.ratelimit.config import (
    RateLimitConfig,
    load_rate_limit_config,
    reload_config,
    model_env_key,
)


def test_model_env_key():
    assert model_env_key("groq:openai/gpt-oss-120b") == "GROQ_OPENAI_GPT_OSS_120B"
    assert model_env_key("cerebras:llama-3.3-70b") == "CEREBRAS_LLAMA_3_3_70B"


def test_defaults(clean_rate_limit_env):
    limits = RateLimitConfig().get_limits("groq:openai/gpt-oss-120b")
    assert limits.as_tuple() == (5, 30, 200)

    config = RateLimitConfig()
    assert config.get_global_request_limits().as_tuple() == (30, 900, 14400)
    assert config.get_global_token_limits().as_tuple() == (64000, 1000000, 1000000)


def test_lookup_order(clean_rate_limit_env):
    clean_rate_limit_env.setenv("RATE_LIMIT_MODEL_GROQ_OPENAI_GPT_OSS_120B_PER_MINUTE", "2")
    clean_rate_limit_env.setenv("RATE_LIMIT_REQUESTS_PER_MINUTE", "7")
    clean_rate_limit_env.setenv("RATE_LIMIT_REQUESTS_PER_HOUR", "70")

    limits = RateLimitConfig().get_limits("groq:openai/gpt-oss-120b")
    assert limits.per_minute == 2
    assert limits.per_hour == 70
    assert limits.per_day == 200

    assert RateLimitConfig().get_limits(None).per_minute == 7


@pytest.mark.parametrize("raw", ["abc", "0", "-3", ""])
def test_bad_values_fall_back(clean_rate_limit_env, raw):
    clean_rate_limit_env.setenv("RATE_LIMIT_MODEL_GROQ_X_PER_MINUTE", raw)
    clean_rate_limit_env.setenv("UPSTREAM_GLOBAL_LIMIT_TOKENS_PER_DAY", raw)

    assert RateLimitConfig().get_limits("groq:x").per_minute == 5
    assert RateLimitConfig().get_global_token_limits().per_day == 1000000


def test_from_env(clean_rate_limit_env):
    clean_rate_limit_env.setenv("RATE_LIMIT_ENABLED", "false")
    clean_rate_limit_env.setenv("UPSTREAM_GLOBAL_MODEL_MARKERS", "cerebras, Llama ")

    config = RateLimitConfig.from_env()
    assert config.enabled is False
    assert config.global_model_markers == ("cerebras", "llama")
    assert config.is_global_model("groq:llama-3.1-8b")
    assert not config.is_global_model("groq:openai/gpt-oss-120b")


def test_validate_rejects_bad_values():
    with pytest.raises(ValueError):
        RateLimitConfig(cleanup_interval_ms=0).validate()
    with pytest.raises(ValueError):
        RateLimitConfig(global_warning_percent=150).validate()


def test_load_is_cached_and_reload_rereads(clean_rate_limit_env):
    first = load_rate_limit_config()
    assert load_rate_limit_config() is first

    clean_rate_limit_env.setenv("RATE_LIMIT_ENABLED", "false")
    reloaded = reload_config()
    assert reloaded is not first
    assert reloaded.enabled is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
