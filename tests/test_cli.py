"""Unit tests for cli.py — argument handling and command wiring."""

import io
import sys
import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from ollamalink import cli
from ollamalink.errors import TransportError
from ollamalink.models import OllamaResult


# ── Fixtures ───────────────────────────────────────────────────────────────────

@pytest.fixture
def client(monkeypatch):
    """Patch OllamaClient in the CLI and hand back the instance it yields."""
    monkeypatch.delenv("OLLAMA_USERNAME", raising=False)
    monkeypatch.delenv("OLLAMA_PASSWORD", raising=False)
    with patch("ollamalink.cli.OllamaClient") as MockClient, \
         patch("ollamalink.cli.setup_logging"), \
         patch("ollamalink.cli.load_config", return_value={}):
        instance = MagicMock()
        MockClient.return_value.__enter__.return_value = instance
        MockClient.return_value.__exit__.return_value = False
        instance.MockClient = MockClient
        yield instance


# ── Config persistence ─────────────────────────────────────────────────────────

class TestConfig:
    def test_missing_file(self, tmp_path):
        assert cli.load_config(tmp_path / "none.json") == {}

    def test_round_trip(self, tmp_path):
        path = tmp_path / "sub" / "config.json"
        cli.save_config({"default_model": "qwen2.5"}, path)
        assert cli.load_config(path) == {"default_model": "qwen2.5"}

    def test_corrupt_file_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        assert cli.load_config(path) == {}


# ── Commands ───────────────────────────────────────────────────────────────────

class TestCommands:
    def test_requires_command(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_models(self, client, capsys):
        client.list_models.return_value = [
            {"name": "llama3.2", "size": 2_000_000_000, "modified_at": "2024-10-01"}
        ]
        cli.main(["models"])
        assert "llama3.2" in capsys.readouterr().out

    def test_url_and_timeout_passed(self, client):
        client.list_models.return_value = []
        cli.main(["--url", "http://gpu:11434", "--timeout", "30", "models"])
        client.MockClient.assert_called_once_with("http://gpu:11434", request_timeout=30.0, basic_auth=None)

    def test_basic_auth_from_env(self, client, monkeypatch):
        monkeypatch.setenv("OLLAMA_USERNAME", "u")
        monkeypatch.setenv("OLLAMA_PASSWORD", "p")
        client.list_models.return_value = []
        cli.main(["models"])
        _, kwargs = client.MockClient.call_args
        assert kwargs["basic_auth"] == ("u", "p")

    def test_generate_streams(self, client, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO(""))

        def fake_generate(model, prompt, system=None, on_chunk=None):
            return OllamaResult("Hello", 200, 5)

        client.generate.side_effect = fake_generate
        cli.main(["generate", "-m", "llama3.2", "say hi"])
        _, kwargs = client.generate.call_args
        assert kwargs["on_chunk"] is cli.stream_chunk

    def test_generate_no_stream_prints_answer(self, client, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO(""))
        client.generate.return_value = OllamaResult("The answer is 42", 200, 5)
        cli.main(["generate", "--no-stream", "question"])
        assert "The answer is 42" in capsys.readouterr().out
        args, _ = client.generate.call_args
        assert args == (cli.DEFAULT_MODEL, "question")

    def test_generate_reads_piped_stdin(self, client, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("some text"))
        client.generate.return_value = OllamaResult("ok", 200, 1)
        cli.main(["generate", "--no-stream", "summarise"])
        args, _ = client.generate.call_args
        assert args[1] == "summarise\n\nsome text"

    def test_generate_ignores_empty_piped_stdin(self, client, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("  \n"))
        client.generate.return_value = OllamaResult("ok", 200, 1)
        cli.main(["generate", "--no-stream", "question"])
        args, _ = client.generate.call_args
        assert args[1] == "question"

    def test_rm(self, client, capsys):
        cli.main(["rm", "llama3.2"])
        client.delete_model.assert_called_once_with("llama3.2")

    def test_embed(self, client, capsys):
        client.embed.return_value = {"embeddings": [[0.5]]}
        cli.main(["embed", "-m", "nomic-embed-text", "hello", "world"])
        client.embed.assert_called_once_with("nomic-embed-text", ["hello", "world"])
        assert "0.5" in capsys.readouterr().out

    def test_error_exits_nonzero(self, client, capsys):
        client.list_models.side_effect = TransportError("Cannot reach Ollama")
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["models"])
        assert exc_info.value.code == 1
        assert "Cannot reach Ollama" in capsys.readouterr().out


class TestChatRepl:
    def test_turns_keep_history(self, client, monkeypatch, tmp_path):
        monkeypatch.setattr(cli, "save_config", MagicMock())
        inputs = iter(["hello", "again", "/exit"])
        monkeypatch.setattr("builtins.input", lambda _: next(inputs))

        def fake_chat(model, messages, on_chunk=None):
            history = list(messages) + [{"role": "assistant", "content": "hi"}]
            return MagicMock(chat_history=history)

        client.chat.side_effect = fake_chat
        cli.main(["chat", "-m", "llama3.2"])

        second_call_messages = client.chat.call_args_list[1].args[1]
        assert [m["content"] for m in second_call_messages] == ["hello", "hi", "again"]
        cli.save_config.assert_called_once()
        assert cli.save_config.call_args.args[0]["default_model"] == "llama3.2"

    def test_save_history(self, client, monkeypatch, tmp_path):
        monkeypatch.setattr(cli, "save_config", MagicMock())
        out = tmp_path / "conv.json"
        inputs = iter(["hello", f"/save {out}", "/exit"])
        monkeypatch.setattr("builtins.input", lambda _: next(inputs))
        client.chat.return_value = MagicMock(
            chat_history=[{"role": "user", "content": "hello"}, {"role": "assistant", "content": "hi"}]
        )
        cli.main(["chat"])
        assert json.loads(out.read_text())[-1]["content"] == "hi"
