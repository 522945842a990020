"""Tests for the ONNX model manager."""

from __future__ import annotations

import json
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from conftest import make_settings

from chromatag.ml.model_manager import MODEL_REGISTRY, OnnxModelManager, get_spec

# ---------------------------------------------------------------------------
# Model registry tests
# ---------------------------------------------------------------------------


class TestModelRegistry:
    def test_known_model_lookup(self) -> None:
        spec = get_spec("vit_base_patch16_224")
        assert spec.repo_id == "Xenova/vit-base-patch16-224"
        assert spec.input_size == 224

    def test_unknown_model_raises_keyerror(self) -> None:
        with pytest.raises(KeyError, match="Unknown model"):
            get_spec("nonexistent_model")

    def test_every_spec_is_keyed_by_its_name(self) -> None:
        for name, spec in MODEL_REGISTRY.items():
            assert spec.name == name
            assert spec.filename.endswith(".onnx")


# ---------------------------------------------------------------------------
# OnnxModelManager tests
# ---------------------------------------------------------------------------


class TestOnnxModelManager:
    @patch("chromatag.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_calls_hf_hub_download(self, mock_download: MagicMock) -> None:
        mock_download.return_value = "/tmp/chromatag_test_models/resnet_50/onnx/model_quantized.onnx"
        mgr = OnnxModelManager(make_settings())

        path = mgr.ensure_downloaded("resnet_50")

        mock_download.assert_called_once_with(
            repo_id="Xenova/resnet-50",
            filename="model_quantized.onnx",
            subfolder="onnx",
            local_dir="/tmp/chromatag_test_models/resnet_50",
        )
        assert path == Path("/tmp/chromatag_test_models/resnet_50/onnx/model_quantized.onnx")

    @patch("chromatag.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_skips_existing(self, mock_download: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "model_quantized.onnx"
        model_file.touch()

        mgr = OnnxModelManager(make_settings(models_dir=str(tmp_path)))
        mgr._model_paths["resnet_50"] = model_file

        path = mgr.ensure_downloaded("resnet_50")

        mock_download.assert_not_called()
        assert path == model_file

    @patch("chromatag.ml.model_manager.hf_hub_download")
    def test_get_labels_reads_id2label_in_index_order(self, mock_download: MagicMock, tmp_path: Path) -> None:
        config = tmp_path / "config.json"
        config.write_text(json.dumps({"id2label": {"2": "loafer", "0": "tench", "10": "sandal", "1": "goldfish"}}))
        mock_download.return_value = str(config)
        mgr = OnnxModelManager(make_settings(models_dir=str(tmp_path)))

        labels = mgr.get_labels("vit_base_patch16_224")
        mgr.get_labels("vit_base_patch16_224")

        assert labels == ["tench", "goldfish", "loafer", "sandal"]
        mock_download.assert_called_once()

    @patch("chromatag.ml.model_manager.hf_hub_download")
    def test_get_labels_without_mapping(self, mock_download: MagicMock, tmp_path: Path) -> None:
        config = tmp_path / "config.json"
        config.write_text("{}")
        mock_download.return_value = str(config)
        mgr = OnnxModelManager(make_settings(models_dir=str(tmp_path)))

        with pytest.raises(ValueError, match="id2label"):
            mgr.get_labels("resnet_50")

    @patch("chromatag.ml.model_manager.InferenceSession")
    @patch("chromatag.ml.model_manager.hf_hub_download")
    def test_get_session_creates_and_caches(self, mock_download: MagicMock, mock_session_cls: MagicMock) -> None:
        mock_download.return_value = "/tmp/chromatag_test_models/resnet_50/onnx/model_quantized.onnx"
        mock_session = MagicMock()
        mock_session_cls.return_value = mock_session
        mgr = OnnxModelManager(make_settings())

        session1 = mgr.get_session("resnet_50")
        session2 = mgr.get_session("resnet_50")

        assert session1 is mock_session
        assert session2 is mock_session
        mock_session_cls.assert_called_once()

    @patch("chromatag.ml.model_manager.InferenceSession")
    @patch("chromatag.ml.model_manager.hf_hub_download")
    def test_get_loaded_models(self, mock_download: MagicMock, mock_session_cls: MagicMock) -> None:
        mock_download.return_value = "/tmp/chromatag_test_models/resnet_50/onnx/model_quantized.onnx"
        mgr = OnnxModelManager(make_settings())

        assert mgr.get_loaded_models() == []
        mgr.get_session("resnet_50")
        assert mgr.get_loaded_models() == ["resnet_50"]

    @patch("chromatag.ml.model_manager.InferenceSession")
    @patch("chromatag.ml.model_manager.hf_hub_download")
    def test_unload_idle_models_removes_expired(self, mock_download: MagicMock, mock_session_cls: MagicMock) -> None:
        mock_download.return_value = "/tmp/chromatag_test_models/resnet_50/onnx/model_quantized.onnx"
        mgr = OnnxModelManager(make_settings(model_ttl=1))
        mgr.get_session("resnet_50")

        mgr._sessions["resnet_50"].last_used = time.monotonic() - 10

        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []

    def test_unload_idle_skipped_when_ttl_zero(self) -> None:
        mgr = OnnxModelManager(make_settings(model_ttl=0))
        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []

    def test_provider_building_cpu(self) -> None:
        mgr = OnnxModelManager(make_settings(device="cpu"))
        assert mgr._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self) -> None:
        mgr = OnnxModelManager(make_settings(device="cuda"))
        assert len(mgr._providers) == 2
        provider_name, provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert mgr._providers[1] == "CPUExecutionProvider"

    @patch("chromatag.ml.model_manager.InferenceSession")
    @patch("chromatag.ml.model_manager.hf_hub_download")
    def test_shutdown_clears_sessions(self, mock_download: MagicMock, mock_session_cls: MagicMock) -> None:
        mock_download.return_value = "/tmp/chromatag_test_models/resnet_50/onnx/model_quantized.onnx"
        mgr = OnnxModelManager(make_settings())
        mgr.get_session("resnet_50")
        assert len(mgr.get_loaded_models()) == 1

        mgr.shutdown()
        assert mgr.get_loaded_models() == []

    def test_unknown_model_raises_keyerror(self) -> None:
        mgr = OnnxModelManager(make_settings())
        with pytest.raises(KeyError, match="Unknown model"):
            mgr.ensure_downloaded("totally_fake_model")
