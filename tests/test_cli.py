# Tests for the `keeper` command line (non-interactive mode)

import functools
import io
import json
import sys

import pytest

import cryptokeeper.__main__ as cli
from cryptokeeper.clipboard_guard import ClipboardGuard
from cryptokeeper.core.config import KeeperConfig, save_config

PASSWORD = "correct-horse"
BTC_KEY = "e9873d79c6d87dc0fb6a5778633389f4453213303da61f20bd67fc233aa33262"


@pytest.fixture
def keeper(tmp_path, monkeypatch, capsys):
    """Run `keeper --vault-dir <tmp> --password-stdin ...`; returns (code, out, err)."""
    vault_dir = tmp_path / "cli"
    save_config(KeeperConfig(vault_dir=vault_dir, kdf_memory_cost=8192, kdf_time_cost=1, kdf_parallelism=1))

    def run(*argv, stdin=""):
        monkeypatch.setattr(sys, "stdin", io.StringIO(stdin))
        code = cli.main(["--vault-dir", str(vault_dir), "--password-stdin", *argv])
        out, err = capsys.readouterr()
        return code, out, err

    run.vault_dir = vault_dir
    return run


@pytest.fixture
def initialized(keeper):
    assert keeper("init", stdin=f"{PASSWORD}\n")[0] == 0
    assert keeper("add", "BTC cold key", "--network", "Bitcoin", stdin=f"{PASSWORD}\n{BTC_KEY}\n")[0] == 0
    assert keeper("add", "Ledger seed", "--kind", "seed-phrase", "--notes", "hardware",
                  stdin=f"{PASSWORD}\nabandon ability able\n")[0] == 0
    return keeper


class TestInit:
    def test_init_creates_vault(self, keeper):
        code, out, _ = keeper("init", stdin=f"{PASSWORD}\n")
        assert code == 0
        assert "Vault created" in out
        assert (keeper.vault_dir / "vault.ck").is_file()

    def test_init_twice_fails(self, keeper):
        keeper("init", stdin=f"{PASSWORD}\n")
        code, _, err = keeper("init", stdin=f"{PASSWORD}\n")
        assert code == 1
        assert "already exists" in err

    def test_init_rejects_weak_password(self, keeper):
        code, _, err = keeper("init", stdin="short\n")
        assert code == 1
        assert "at least 8" in err

    def test_missing_vault(self, keeper):
        code, _, err = keeper("list")
        assert code == 1
        assert "keeper init" in err


class TestReadCommands:
    def test_list_needs_no_password(self, initialized):
        code, out, _ = initialized("list")
        assert code == 0
        assert "BTC cold key" in out
        assert "Seed Phrase" in out

    def test_list_json(self, initialized):
        code, out, _ = initialized("list", "--json")
        data = json.loads(out)
        assert [e["label"] for e in data] == ["BTC cold key", "Ledger seed"]
        assert data[0]["network"] == "Bitcoin"
        assert "secret" not in data[0]

    def test_view_json_reveals_secret(self, initialized):
        code, out, _ = initialized("view", "1", "--json", stdin=f"{PASSWORD}\n")
        assert code == 0
        assert json.loads(out)["secret"] == BTC_KEY

    def test_view_hide_secret(self, initialized):
        code, out, _ = initialized("view", "btc cold key", "--hide-secret", stdin=f"{PASSWORD}\n")
        assert code == 0
        assert "Bitcoin" in out
        assert BTC_KEY not in out

    def test_wrong_password_exit_code(self, initialized):
        code, out, err = initialized("view", "1", stdin="wrong-pass\n")
        assert code == 2
        assert "Invalid master password" in err
        assert BTC_KEY not in out

    def test_search(self, initialized):
        code, out, _ = initialized("search", "hardware", "--json", stdin=f"{PASSWORD}\n")
        assert [e["label"] for e in json.loads(out)] == ["Ledger seed"]

    def test_unknown_ref(self, initialized):
        code, _, err = initialized("view", "9", stdin=f"{PASSWORD}\n")
        assert code == 1
        assert "not found" in err

    def test_missing_stdin_line(self, initialized):
        code, _, err = initialized("view", "1", stdin="")
        assert code == 1
        assert "stdin" in err


class TestWriteCommands:
    def test_rename_and_edit(self, initialized):
        assert initialized("rename", "1", "BTC vault key", stdin=f"{PASSWORD}\n")[0] == 0
        assert initialized("edit", "BTC vault key", "--notes", "steel plate", stdin=f"{PASSWORD}\n")[0] == 0
        data = json.loads(initialized("list", "--json")[1])
        assert data[0]["label"] == "BTC vault key"
        assert data[0]["metadata"] == "steel plate"

    def test_edit_secret(self, initialized):
        assert initialized("edit", "2", "--secret", stdin=f"{PASSWORD}\nnew words\n")[0] == 0
        out = initialized("view", "2", "--json", stdin=f"{PASSWORD}\n")[1]
        assert json.loads(out)["secret"] == "new words"

    def test_delete_requires_confirmation(self, initialized):
        code, out, _ = initialized("delete", "1", stdin=f"{PASSWORD}\n")
        assert code == 1
        assert "Cancelled" in out
        assert len(json.loads(initialized("list", "--json")[1])) == 2

    def test_delete_yes(self, initialized):
        assert initialized("delete", "1", "--yes", stdin=f"{PASSWORD}\n")[0] == 0
        assert [e["label"] for e in json.loads(initialized("list", "--json")[1])] == ["Ledger seed"]

    def test_bad_kind_is_usage_error(self, initialized):
        with pytest.raises(SystemExit) as exc:
            initialized("add", "x", "--kind", "banana", stdin=f"{PASSWORD}\nx\n")
        assert exc.value.code == 2

    def test_passwd(self, initialized):
        code, out, _ = initialized("passwd", stdin=f"{PASSWORD}\nbattery-staple\n")
        assert code == 0
        assert "changed" in out
        assert initialized("view", "1", stdin=f"{PASSWORD}\n")[0] == 2
        assert initialized("view", "1", stdin="battery-staple\n")[0] == 0


class TestViewPassword:
    @pytest.fixture
    def locked(self, initialized):
        code, _, _ = initialized("add", "Hot wallet", "--view-password",
                                 stdin=f"{PASSWORD}\nhot-secret\nsecond-factor\n")
        assert code == 0
        return initialized

    def test_list_marks_protected_entry(self, locked):
        out = locked("list")[1]
        assert "(view password)" in out
        data = json.loads(locked("list", "--json")[1])
        assert [e["protected"] for e in data] == [False, False, True]

    def test_view_prompts_for_view_password(self, locked):
        code, out, _ = locked("view", "3", "--json", stdin=f"{PASSWORD}\nsecond-factor\n")
        assert code == 0
        assert json.loads(out)["secret"] == "hot-secret"

    def test_wrong_view_password_exit_code(self, locked):
        code, out, err = locked("view", "3", stdin=f"{PASSWORD}\nguess\n")
        assert code == 2
        assert "view password" in err
        assert "hot-secret" not in out

    def test_hide_secret_needs_no_view_password(self, locked):
        code, out, _ = locked("view", "3", "--hide-secret", stdin=f"{PASSWORD}\n")
        assert code == 0
        assert "Hot wallet" in out
        assert "hot-secret" not in out

    def test_protect_and_remove(self, locked):
        assert locked("protect", "1", stdin=f"{PASSWORD}\nnew-view\n")[0] == 0
        assert locked("view", "1", "--json", stdin=f"{PASSWORD}\nnew-view\n")[0] == 0
        code, out, _ = locked("protect", "1", "--remove", stdin=f"{PASSWORD}\nnew-view\n")
        assert code == 0
        assert "removed" in out
        assert json.loads(locked("view", "1", "--json", stdin=f"{PASSWORD}\n")[1])["secret"] == BTC_KEY


class TestRecoveryCommands:
    def test_recovery_then_recover(self, initialized):
        code, out, _ = initialized("recovery", "--question", "2", stdin=f"{PASSWORD}\nLisbon\n")
        assert code == 0
        assert "What city were you born in?" in out

        code, out, _ = initialized("recover", stdin="  lisbon \nbattery-staple\n")
        assert code == 0
        assert "What city were you born in?" in out
        assert "2 entries recovered" in out
        assert initialized("view", "1", stdin=f"{PASSWORD}\n")[0] == 2
        assert json.loads(initialized("view", "1", "--json", stdin="battery-staple\n")[1])["secret"] == BTC_KEY

    def test_recover_wrong_answer(self, initialized):
        initialized("recovery", stdin=f"{PASSWORD}\nfluffy\n")
        code, _, err = initialized("recover", stdin="rex\nbattery-staple\n")
        assert code == 2
        assert "recovery answer" in err
        assert initialized("view", "1", stdin=f"{PASSWORD}\n")[0] == 0

    def test_recover_without_recovery(self, initialized):
        code, _, err = initialized("recover", stdin="fluffy\nbattery-staple\n")
        assert code == 1
        assert "keeper recovery" in err

    def test_question_out_of_range(self, initialized):
        code, _, err = initialized("recovery", "--question", "4", stdin=f"{PASSWORD}\nfluffy\n")
        assert code == 1
        assert "between 1 and 3" in err

    def test_passwd_keeps_recovery_with_answer(self, initialized):
        initialized("recovery", stdin=f"{PASSWORD}\nfluffy\n")
        code, out, _ = initialized("passwd", stdin=f"{PASSWORD}\nbattery-staple\nFluffy\n")
        assert code == 0
        assert "Recovery question cleared" not in out
        assert initialized("recover", stdin="fluffy\nthird-password\n")[0] == 0

    def test_passwd_without_answer_clears_recovery(self, initialized):
        initialized("recovery", stdin=f"{PASSWORD}\nfluffy\n")
        code, out, _ = initialized("passwd", stdin=f"{PASSWORD}\nbattery-staple\n\n")
        assert code == 0
        assert "Recovery question cleared" in out
        assert initialized("recover", stdin="fluffy\nthird-password\n")[0] == 1

    def test_clear(self, initialized):
        initialized("recovery", stdin=f"{PASSWORD}\nfluffy\n")
        code, out, _ = initialized("recovery", "--clear", stdin=f"{PASSWORD}\n")
        assert code == 0
        assert "cleared" in out

class TestBackup:
    def test_export_and_import_report(self, initialized, tmp_path):
        backup = tmp_path / "backup.ck"
        code, out, _ = initialized("export", str(backup), "--new-password",
                                   stdin=f"{PASSWORD}\nbackup-password\n")
        assert code == 0
        assert "Exported 2 entries" in out

        code, out, _ = initialized("import", str(backup), "--json",
                                   stdin=f"{PASSWORD}\nbackup-password\n")
        report = json.loads(out)
        assert len(report["conflicts"]) == 2
        assert report["imported"] == []

    def test_export_over_live_vault_refused(self, initialized):
        live = initialized.vault_dir / "vault.ck"
        code, _, err = initialized("export", str(live), stdin=f"{PASSWORD}\n")
        assert code == 1
        assert "live vault" in err


class TestCopy:
    def test_copy_clears_after_timeout(self, initialized, monkeypatch, board):
        monkeypatch.setattr(cli, "ClipboardGuard", functools.partial(ClipboardGuard, backend=board))

        code, out, _ = initialized("copy", "1", "--timeout", "0.1", stdin=f"{PASSWORD}\n")

        assert code == 0
        assert board.writes[0] == BTC_KEY
        assert board.content == ""
        assert BTC_KEY not in out


class TestConfigCommand:
    def test_show_and_set(self, keeper):
        code, out, _ = keeper("config", "--clipboard-timeout", "20", "--json")
        assert code == 0
        assert json.loads(out)["clipboard_timeout"] == 20.0
        assert json.loads(keeper("config", "--json")[1])["clipboard_timeout"] == 20.0

    def test_invalid_value(self, keeper):
        code, _, err = keeper("config", "--clipboard-timeout", "-1")
        assert code == 1
        assert "clipboard_timeout" in err
