"""Unit tests for OpenVINO device selection, using a stand-in Core."""

import pytest

from local_embeddings.inference.device_manager import DeviceManager


class FakeCore:
    def __init__(self, devices):
        self._devices = devices
        self.queries = 0

    @property
    def available_devices(self):
        self.queries += 1
        if isinstance(self._devices, Exception):
            raise self._devices
        return self._devices


class TestSelect:
    @pytest.mark.parametrize(
        "preferred, expected",
        [
            ("CPU", "CPU"),
            ("GPU", "GPU"),
            ("NPU", "CPU"),
            ("AUTO", "AUTO"),
            ("MULTI:CPU,GPU", "MULTI:CPU,GPU"),
            ("MULTI:GPU,NPU", "GPU"),
            ("MULTI:NPU", "CPU"),
            ("", "CPU"),
        ],
    )
    def test_select(self, preferred, expected):
        assert DeviceManager(FakeCore(["CPU", "GPU"])).select(preferred) == expected

    def test_devices_cached(self):
        core = FakeCore(["CPU"])
        manager = DeviceManager(core)
        manager.list_devices()
        manager.select("GPU")
        assert core.queries == 1

    def test_query_failure_falls_back_to_cpu(self):
        manager = DeviceManager(FakeCore(RuntimeError("driver error")))
        assert manager.list_devices() == []
        assert manager.select("GPU") == "CPU"
