"""Tests for Settings configuration model."""

from pathlib import Path

from src.config import Settings


class TestDefaults:
    def test_default_timezone(self):
        s = Settings()
        assert s.scheduler_timezone == "Asia/Kolkata"

    def test_default_graph_version(self):
        s = Settings()
        assert s.graph_version == "v22.0"

    def test_default_job_store(self):
        s = Settings()
        assert s.job_store_backend == "json"
        assert s.jobs_file_path == Path("data/scheduled-jobs.json")

    def test_default_template(self):
        s = Settings()
        assert s.whatsapp_template_name == "hello_world"
        assert s.whatsapp_template_language == "en_US"

    def test_default_port(self):
        s = Settings()
        assert s.port == 3000


class TestMissingRequired:
    def test_all_missing(self):
        s = Settings()
        assert s.missing_required() == ["WHATSAPP_PHONE_NUMBER_ID", "WHATSAPP_TOKEN"]

    def test_token_missing(self):
        s = Settings(whatsapp_phone_number_id="123")
        assert s.missing_required() == ["WHATSAPP_TOKEN"]

    def test_configured(self):
        s = Settings(whatsapp_phone_number_id="123", whatsapp_token="abc")
        assert s.missing_required() == []


def test_messages_url():
    s = Settings(whatsapp_phone_number_id="123456", graph_version="v21.0")
    assert s.messages_url == "https://graph.facebook.com/v21.0/123456/messages"
