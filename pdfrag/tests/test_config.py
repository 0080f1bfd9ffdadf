from pdfrag.config.settings import load_settings

def test_load_settings_from_yaml_and_env(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "chunking:\n  chunk_size: 256\n"
        "billing:\n  free_tier_units: 500\n  metered_price_id: price_abc\n"
        "storage:\n  backend: memory\n",
        encoding="utf-8"
    )
    monkeypatch.setenv("SERVICE_API_KEY", "from-env")

    settings = load_settings(str(config_file))

    assert settings.chunking.chunk_size == 256
    assert settings.chunking.chunk_overlap == 50
    assert settings.billing.free_tier_units == 500
    assert settings.billing.metered_price_id == "price_abc"
    assert settings.storage.backend == "memory"
    assert settings.service_api_key == "from-env"

def test_bundled_config_is_found():
    settings = load_settings("does/not/exist.yaml")
    assert settings.qdrant.collection_name == "pdf_chunks"
    assert settings.ingestion.mode == "cache"
