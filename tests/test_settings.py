"""Unit tests for options and YAML settings loading."""

import pytest

from local_embeddings.errors import ConfigurationError
from local_embeddings.settings import (
    DEFAULT_MODEL_NAME,
    SETTINGS_PATH,
    LocalEmbeddingsOptions,
    load_settings,
)


class TestLoadSettings:
    def test_project_settings(self):
        settings = load_settings(SETTINGS_PATH)
        assert settings["embeddings"]["model_name"] == DEFAULT_MODEL_NAME

    def test_missing_file(self, tmp_path):
        assert load_settings(tmp_path / "missing.yaml") == {}

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("embeddings: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_settings(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_settings(path)


class TestOptions:
    def test_defaults(self):
        opts = LocalEmbeddingsOptions()
        assert opts.model_name == DEFAULT_MODEL_NAME
        assert opts.max_sequence_length == 512
        assert opts.ensure_model_downloaded is True
        assert opts.normalize_embeddings is False
        assert opts.prefer_quantized is False
        assert opts.use_parallel_execution is True
        assert opts.backend == "openvino"
        assert opts.validate() is opts

    def test_from_settings(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(
            "embeddings:\n"
            "  model_name: BAAI/bge-small-en-v1.5\n"
            "  normalize_embeddings: true\n"
            "  intra_op_num_threads: 4\n"
            "  retriever_top_k: 5\n",
            encoding="utf-8",
        )
        opts = LocalEmbeddingsOptions.from_settings(load_settings(path))
        assert opts.model_name == "BAAI/bge-small-en-v1.5"
        assert opts.normalize_embeddings is True
        assert opts.intra_op_num_threads == 4

    def test_from_empty_settings(self):
        assert LocalEmbeddingsOptions.from_settings({}) == LocalEmbeddingsOptions()

    def test_with_overrides(self):
        opts = LocalEmbeddingsOptions().with_overrides(prefer_quantized=True)
        assert opts.prefer_quantized is True

    @pytest.mark.parametrize(
        "changes",
        [
            {"model_name": " "},
            {"max_sequence_length": 0},
            {"inter_op_num_threads": 0},
            {"intra_op_num_threads": -1},
            {"backend": "tensorrt"},
            {"ensure_model_downloaded": False},
        ],
    )
    def test_validate_rejects(self, changes):
        with pytest.raises(ConfigurationError):
            LocalEmbeddingsOptions(**changes).validate()

    def test_model_path_without_download(self):
        opts = LocalEmbeddingsOptions(model_path="models/x", ensure_model_downloaded=False)
        assert opts.validate().has_model_path
