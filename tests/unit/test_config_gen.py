"""Tests for descriptor parsing and routing config generation."""

import logging
import os

import pytest
import yaml
from hermit_launcher.config_gen import (
    CONFIG_FILENAME,
    generate,
    parse_descriptors,
    to_document,
    write_config,
)
from hermit_launcher.errors import ConfigurationError
from hermit_launcher.models import ModelDescriptor


def _d(name: str, provider: str, model_id: str = "m", **params) -> ModelDescriptor:
    return ModelDescriptor(name=name, provider=provider, model_id=model_id, optional_params=params)


class TestParseDescriptors:
    def test_valid_entry(self):
        [d] = parse_descriptors([{"name": "local", "provider": "local", "model": "m", "top_p": 0.8}])
        assert d.name == "local"
        assert d.model_id == "m"
        assert d.optional_params == {"top_p": 0.8}

    def test_model_id_alias(self):
        [d] = parse_descriptors([{"name": "a", "provider": "local", "model_id": "m"}])
        assert d.model_id == "m"

    def test_drops_incomplete_entries(self, caplog):
        raw = [
            {"name": "ok", "provider": "local", "model": "m"},
            {"name": "no-provider", "model": "m"},
            {"provider": "local", "model": "m"},
            {"name": "no-model", "provider": "local"},
            "not-a-mapping",
        ]
        with caplog.at_level(logging.WARNING):
            descriptors = parse_descriptors(raw)
        assert [d.name for d in descriptors] == ["ok"]
        assert len(caplog.records) == 4

    def test_drops_duplicate_names(self):
        raw = [
            {"name": "a", "provider": "local", "model": "m1"},
            {"name": "a", "provider": "openrouter", "model": "m2"},
        ]
        descriptors = parse_descriptors(raw)
        assert len(descriptors) == 1
        assert descriptors[0].model_id == "m1"

    def test_drops_non_numeric_decoding_params(self, caplog):
        raw = [
            {"name": "ok", "provider": "openrouter", "model": "m"},
            {"name": "greedy", "provider": "huggingface", "model": "m", "max_tokens": "lots"},
            {"name": "hot", "provider": "local", "model": "m", "temperature": "warm"},
            {"name": "flag", "provider": "local", "model": "m", "top_k": True},
        ]
        with caplog.at_level(logging.WARNING):
            descriptors = parse_descriptors(raw)
        assert [d.name for d in descriptors] == ["ok"]
        messages = [r.getMessage() for r in caplog.records]
        assert any("max_tokens" in m for m in messages)
        assert any("temperature" in m for m in messages)
        assert any("top_k" in m for m in messages)

    def test_coerces_numeric_strings(self):
        raw = [{"name": "a", "provider": "huggingface", "model": "m", "max_tokens": "4096", "top_p": "0.9"}]
        [d] = parse_descriptors(raw)
        assert d.optional_params == {"max_tokens": 4096, "top_p": 0.9}

    def test_none(self):
        assert parse_descriptors(None) == []


class TestGenerate:
    def test_empty_list_is_fatal(self):
        with pytest.raises(ConfigurationError):
            generate([])

    def test_none_is_fatal(self):
        with pytest.raises(ConfigurationError):
            generate(None)

    def test_local_entry(self):
        config = generate([_d("local", "local", "m")])
        assert len(config.entries) == 1
        entry = config.entries[0]
        assert entry.display_name == "local"
        assert entry.resolved_model == "openai/m"
        assert entry.api_base == "http://host.docker.internal:1234/v1"
        # Decoding params are omitted when absent
        assert entry.merged_params == {}

    def test_local_passes_decoding_params(self):
        config = generate([_d("local", "local", "m", temperature=0.0, top_p=0.8, max_tokens=65536, seed=1)])
        params = config.entries[0].merged_params
        assert params == {"temperature": 0.0, "top_p": 0.8, "max_tokens": 65536}

    def test_unknown_provider_is_skipped(self, caplog):
        with caplog.at_level(logging.WARNING):
            config = generate([_d("x", "bogus")])
        assert config.entries == []
        assert any("bogus" in r.getMessage() for r in caplog.records)

    def test_mixed_batch_keeps_valid_order(self):
        descriptors = [_d("a", "local"), _d("b", "bogus"), _d("c", "openrouter"), _d("d", "nope")]
        config = generate(descriptors)
        assert [e.display_name for e in config.entries] == ["a", "c"]

    def test_strict_hosted_defaults_max_tokens(self):
        [entry] = generate([_d("kimi", "huggingface", "moonshotai/Kimi-K2")]).entries
        assert entry.resolved_model == "huggingface/moonshotai/Kimi-K2"
        assert entry.merged_params["max_tokens"] == 8192
        assert entry.merged_params["num_retries"] == 0
        assert entry.merged_params["drop_params"] is True
        assert entry.model_info == {
            "max_tokens": 8192,
            "max_output_tokens": 8192,
            "supports_vision": False,
            "supports_function_calling": False,
        }

    def test_strict_hosted_caps_max_tokens(self):
        [low] = generate([_d("a", "huggingface", max_tokens=1024)]).entries
        [high] = generate([_d("b", "huggingface", max_tokens=100_000)]).entries
        assert low.merged_params["max_tokens"] == 1024
        assert high.merged_params["max_tokens"] == 8192
        assert high.model_info["max_output_tokens"] == 8192

    def test_plain_provider_ignores_decoding_params(self):
        [entry] = generate([_d("c", "anthropic", "*", temperature=0.2)]).entries
        assert entry.api_base is None
        assert entry.merged_params == {}
        assert entry.model_info is None

    def test_invalid_max_tokens_skips_only_that_entry(self, caplog):
        raw = [
            {"name": "kimi", "provider": "openrouter", "model": "moonshotai/kimi-k2"},
            {"name": "hf", "provider": "huggingface", "model": "m", "max_tokens": "lots"},
        ]
        with caplog.at_level(logging.WARNING):
            config = generate(parse_descriptors(raw))
        assert [e.display_name for e in config.entries] == ["kimi"]
        assert any("hf" in r.getMessage() for r in caplog.records)

    def test_invalid_params_on_prebuilt_descriptor(self, caplog):
        with caplog.at_level(logging.WARNING):
            config = generate([_d("ok", "openrouter"), _d("hf", "huggingface", max_tokens="lots")])
        assert [e.display_name for e in config.entries] == ["ok"]
        assert any("invalid parameters" in r.getMessage() for r in caplog.records)

    def test_global_settings_disable_retries(self):
        config = generate([_d("a", "local")])
        assert config.global_settings.retries_disabled is True
        assert config.global_settings.allowed_failures == 0


class TestDocument:
    def test_document_shape(self):
        doc = to_document(generate([_d("local", "local", "m", temperature=0.7), _d("c", "anthropic", "*")]))
        assert doc["model_list"][0] == {
            "model_name": "local",
            "litellm_params": {
                "model": "openai/m",
                "api_key": "lm-studio",
                "api_base": "http://host.docker.internal:1234/v1",
                "temperature": 0.7,
            },
        }
        assert "api_base" not in doc["model_list"][1]["litellm_params"]
        assert doc["general_settings"] == {"retries_disabled": True, "allowed_failures": 0}
        assert doc["router_settings"] == {"allowed_fails": 0, "num_retries": 0}

    def test_strict_hosted_has_model_info(self):
        doc = to_document(generate([_d("hf", "huggingface")]))
        assert doc["model_list"][0]["model_info"]["supports_vision"] is False


class TestWriteConfig:
    def test_writes_yaml(self, cache_dir):
        path = write_config(generate([_d("local", "local", "m")]), cache_dir)
        assert path == os.path.join(cache_dir, CONFIG_FILENAME)
        with open(path) as f:
            doc = yaml.safe_load(f)
        assert doc["model_list"][0]["model_name"] == "local"

    def test_rewrites_in_full(self, cache_dir):
        write_config(generate([_d("a", "local"), _d("b", "openrouter")]), cache_dir)
        path = write_config(generate([_d("c", "anthropic")]), cache_dir)
        with open(path) as f:
            doc = yaml.safe_load(f)
        assert [m["model_name"] for m in doc["model_list"]] == ["c"]

    def test_no_temp_files_left(self, cache_dir):
        write_config(generate([_d("a", "local")]), cache_dir)
        assert os.listdir(cache_dir) == [CONFIG_FILENAME]

    def test_failed_write_keeps_previous_document(self, cache_dir, monkeypatch):
        path = write_config(generate([_d("a", "local")]), cache_dir)

        def _boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", _boom)
        with pytest.raises(OSError):
            write_config(generate([_d("b", "openrouter")]), cache_dir)

        with open(path) as f:
            doc = yaml.safe_load(f)
        assert [m["model_name"] for m in doc["model_list"]] == ["a"]
        assert os.listdir(cache_dir) == [CONFIG_FILENAME]
