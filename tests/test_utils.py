import pytest

from chatiq.core.formatting import greeting, render_message, split_code_blocks
from chatiq.core.pointer import TabPointerStore
from chatiq.core.subscriptions import SubscriptionSlot
from chatiq.models.chat import Message, UserIdentity, derive_title
from chatiq.utils import config
from chatiq.utils.errors import ConfigurationFailure


# --- Titles ---

def test_short_text_is_used_as_title():
    assert derive_title("  hello there ") == "hello there"


def test_long_text_is_truncated():
    text = "a" * 35 + "b"
    assert derive_title(text) == "a" * 35 + "..."
    assert derive_title("a" * 35) == "a" * 35


def test_titles_without_text():
    assert derive_title("", has_image=True) == "Image Chat"
    assert derive_title(None) == "New Chat"


# --- Formatting ---

def test_split_code_blocks():
    text = "Try this:\n```python\nprint('hi')\n```\nDone."

    segments = split_code_blocks(text)

    assert segments == [
        {"kind": "text", "text": "Try this:\n"},
        {"kind": "code", "language": "python", "code": "print('hi')"},
        {"kind": "text", "text": "\nDone."},
    ]


def test_code_block_without_language():
    assert split_code_blocks("```\nls -la\n```") == [{"kind": "code", "language": None, "code": "ls -la"}]


def test_render_image_message_as_data_url():
    message = Message(id="m1", sender="user", type="image", content="aGVsbG8=", mime_type="image/jpeg")

    rendered = render_message(message)

    assert rendered["src"] == "data:image/jpeg;base64,aGVsbG8="
    assert rendered["alt"] == "User image"


def test_greeting():
    assert greeting(UserIdentity(uid="u1", display_name="Ada")) == "Hi, Ada!"
    assert greeting(None) is None


# --- Pointer ---

def test_pointer_is_scoped_per_tab():
    pointers = TabPointerStore()
    first, second = pointers.mirror("alice", "tab-1"), pointers.mirror("alice", "tab-2")

    first.set("s1")

    assert first.get() == "s1"
    assert second.get() is None
    first.clear()
    assert first.get() is None


# --- Subscription slots ---

def test_replace_releases_previous_listener():
    slot = SubscriptionSlot("messages")
    released = []

    first = slot.replace(lambda token: lambda: released.append("first"))
    second = slot.replace(lambda token: lambda: released.append("second"))

    assert released == ["first"]
    assert not slot.is_current(first)
    assert slot.is_current(second)


def test_release_survives_failing_unsubscribe():
    def broken():
        raise RuntimeError("listener already gone")

    slot = SubscriptionSlot("sessions")
    token = slot.replace(lambda token: broken)
    slot.release()

    assert slot.active is False
    assert not slot.is_current(token)


# --- Config ---

def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigurationFailure):
        config.load_config(str(tmp_path / "missing.yaml"))


def test_empty_config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    with pytest.raises(ConfigurationFailure):
        config.load_config(str(path))


def test_invalid_credentials_json(monkeypatch):
    monkeypatch.setenv("FIREBASE_CREDENTIALS_JSON", "{not json")
    with pytest.raises(ConfigurationFailure):
        config.firebase_credentials_info()


def test_app_id_prefers_environment(monkeypatch):
    monkeypatch.setenv("CHATIQ_APP_ID", "from-env")
    assert config.app_id({"firestore": {"app_id": "from-file"}}) == "from-env"
    monkeypatch.delenv("CHATIQ_APP_ID")
    assert config.app_id({"firestore": {"app_id": "from-file"}}) == "from-file"
    assert config.app_id({}) == "default-app-id"
