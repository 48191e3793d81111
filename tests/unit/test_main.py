import json

import pytest

from notification_assistant.config import load_config
from notification_assistant.main import build_assistant, ingest_file, run_reschedule


@pytest.fixture
def assistant(tmp_path, monkeypatch):
    for key in ["LLM_API_KEY", "TWILIO_ACCOUNT_SID", "CONNECTED_APPS", "AUTO_REPLY"]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DB_PATH", str(tmp_path / "assistant.db"))
    instance = build_assistant(load_config())
    yield instance
    instance.close()


def _write_lines(path, records):
    path.write_text("\n".join(json.dumps(r) for r in records) + "\n\nnot json\n", encoding="utf-8")


def test_ingest_file_stores_and_confirms(assistant, tmp_path, capsys):
    feed = tmp_path / "feed.jsonl"
    _write_lines(feed, [
        {"package": "com.whatsapp", "title": "Alex", "text": "futsal tomorrow at 6pm? let's go", "key": "k1"},
        {"package": "com.whatsapp", "title": "Alex", "text": "futsal tomorrow at 6pm? let's go", "key": "k1"},
        {"package": "com.whatsapp", "title": "WhatsApp", "text": "3 new messages"},
        {"package": "com.android.systemui", "title": "USB", "text": "charging"},
    ])

    stored = ingest_file(assistant, str(feed), confirm=True)

    assert stored == 1
    out = capsys.readouterr().out
    assert "Futsal" in out
    assert "saved reminder" in out
    assert len(assistant.repository.get_upcoming_reminders(assistant.scheduler.clock())) == 1


def test_reschedule_records_run(assistant):
    assert run_reschedule(assistant) == 0
    assert assistant.repository.get_meta("last_reschedule") is not None
