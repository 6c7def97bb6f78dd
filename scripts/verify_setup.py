"""
Setup Verification Script
==========================
Quick smoke-test that checks whether every required dependency is
importable and the model cache is usable.

Run after setting up the virtual environment:
    python scripts/verify_setup.py
    python scripts/verify_setup.py --load    (also load the model and embed a test sentence)

Exit codes:
    0  -- all checks passed
    1  -- one or more checks failed
"""

import argparse
import importlib
import logging
import sys

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

# (module_name, display_name, required)
REQUIRED_PACKAGES = [
    ("numpy", "NumPy", True),
    ("openvino", "OpenVINO", True),
    ("transformers", "transformers", True),
    ("tokenizers", "tokenizers", True),
    ("httpx", "httpx", True),
    ("yaml", "PyYAML", True),
    ("tqdm", "tqdm", True),
    ("onnxruntime", "ONNX Runtime", False),  # alternative backend
]


def check_python_version() -> bool:
    """Verify Python >= 3.9."""
    v = sys.version_info
    ok = v >= (3, 9)
    logger.info(
        "Python %d.%d.%d %s",
        v.major, v.minor, v.micro,
        "(OK)" if ok else "(FAIL: need >= 3.9)",
    )
    return ok


def check_package(module: str, display: str, required: bool) -> bool:
    """Try to import a package and report its version if available."""
    try:
        mod = importlib.import_module(module)
        version = getattr(mod, "__version__", "unknown")
        logger.info("  %-30s  %s", display, version)
        return True
    except ImportError:
        tag = "MISSING (required)" if required else "MISSING (optional)"
        logger.warning("  %-30s  %s", display, tag)
        return not required  # optional packages don't cause failure


def check_openvino_devices() -> bool:
    """List the inference devices OpenVINO can see."""
    from local_embeddings.inference.device_manager import DeviceManager
    import openvino as ov

    devices = DeviceManager(ov.Core()).list_devices()
    if not devices:
        logger.warning("  %-30s  none detected", "OpenVINO devices")
        return False
    logger.info("  %-30s  %s", "OpenVINO devices", ", ".join(devices))
    return True


def check_model_cache(model_name: str, cache_dir: str) -> bool:
    """Report the cache directory and whether the model is already there."""
    from local_embeddings.models import ModelDownloader, find_model_file

    downloader = ModelDownloader(cache_directory=cache_dir)
    model_dir = downloader.get_model_directory(model_name)
    logger.info("  %-30s  %s", "Cache directory", downloader.get_cache_directory())
    graph = find_model_file(model_dir, prefer_quantized=True)
    if graph is None:
        logger.warning(
            "  %-30s  NOT CACHED (run: python scripts/download_models.py)", model_name
        )
        return False
    logger.info("  %-30s  %s", model_name, graph)
    return True


def check_generation(options) -> bool:
    """Load the model and embed one sentence."""
    from local_embeddings import LocalEmbeddingGenerator, LocalEmbeddingsError

    try:
        with LocalEmbeddingGenerator(options) as generator:
            vector = generator.generate_one("OpenVINO runs this embedding locally.")
            logger.info(
                "  %-30s  dim=%d (%s)",
                "Test embedding", vector.dimension, generator.model_path.name,
            )
        return True
    except LocalEmbeddingsError as exc:
        logger.error("  %-30s  FAILED: %s", "Test embedding", exc)
        return False


def main() -> None:
    parser = argparse.ArgumentParser(description="Verify the local_embeddings setup")
    parser.add_argument("--load", action="store_true", help="Also load the model")
    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("Local Embeddings -- Setup Verification")
    logger.info("=" * 60)

    all_ok = True

    logger.info("\n[1/4] Python version")
    all_ok &= check_python_version()

    logger.info("\n[2/4] Python packages")
    for module, display, required in REQUIRED_PACKAGES:
        all_ok &= check_package(module, display, required)
    if not all_ok:
        logger.error("Required packages are missing; skipping remaining checks.")
        sys.exit(1)

    from local_embeddings.settings import LocalEmbeddingsOptions, load_settings
    options = LocalEmbeddingsOptions.from_settings(load_settings())

    logger.info("\n[3/4] OpenVINO devices")
    check_openvino_devices()  # advisory only -- CPU fallback always exists

    logger.info("\n[4/4] Model cache")
    cached = check_model_cache(options.model_name, options.cache_directory)
    if args.load:
        all_ok &= check_generation(options)
    elif not cached:
        logger.info("Model will be downloaded on first use.")

    logger.info("\n" + "=" * 60)
    if all_ok:
        logger.info("All required checks PASSED.")
    else:
        logger.error("Some checks FAILED.  Fix the issues above and re-run.")
    logger.info("=" * 60)

    sys.exit(0 if all_ok else 1)


if __name__ == "__main__":
    main()
