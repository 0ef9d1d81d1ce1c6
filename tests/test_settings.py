import json

from invoicing.settings import ROOT_DIR, Settings, data_dir, load_settings, settings_path


class TestLoadSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        s = load_settings(tmp_path / "nope.json")

        assert s == Settings()
        assert s.numbering.invoice_prefix == "A"
        assert s.numbering.width == 5
        assert s.max_commit_retries == 5
        assert s.default_currency == "INR"

    def test_corrupt_file_gives_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{oops", encoding="utf-8")

        assert load_settings(path) == Settings()

    def test_invalid_values_give_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"numbering": {"width": 0}}), encoding="utf-8")

        assert load_settings(path) == Settings()

    def test_valid_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({
            "numbering": {"invoice_prefix": "INV-", "width": 4, "strategy": "counter"},
            "default_currency": "USD",
            "company": {"name": "Afterink Studio", "email": "hello@afterink.com"},
            "customization": {"primaryColor": "#000000"},
        }), encoding="utf-8")

        s = load_settings(path)

        assert s.numbering.invoice_prefix == "INV-"
        assert s.numbering.strategy == "counter"
        assert s.default_currency == "USD"
        assert s.company.name == "Afterink Studio"
        assert s.customization == {"primaryColor": "#000000"}

    def test_shipped_settings_are_valid(self):
        s = load_settings(ROOT_DIR / "data" / "settings.json")

        assert s.company.name != Settings().company.name


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("INVOICING_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("INVOICING_SETTINGS", raising=False)

    assert data_dir() == tmp_path
    assert settings_path() == tmp_path / "settings.json"

    monkeypatch.setenv("INVOICING_SETTINGS", str(tmp_path / "custom.json"))
    assert settings_path() == tmp_path / "custom.json"
