import pytest

from solana_token_gate import cli


def test_parser_wires_subcommands():
    parser = cli.build_parser()

    args = parser.parse_args(["--dry-run", "verify", "--user", "42", "--wallet", "W"])
    assert args.func is cli.cmd_verify
    assert args.dry_run

    args = parser.parse_args(["whitelist", "--admin", "1", "--target", "@alice"])
    assert args.func is cli.cmd_whitelist
    assert args.target == "@alice"


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_verify_status_and_audit_end_to_end(monkeypatch, tmp_path, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "gate.sqlite"))
    monkeypatch.setenv("TREASURY_WALLET", "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb")
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    wallet = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

    for argv in (
        ["--dry-run", "verify", "--user", "42", "--wallet", wallet],
        ["--dry-run", "status", "--user", "42"],
        ["--dry-run", "audit"],
    ):
        monkeypatch.setattr("sys.argv", ["solana-token-gate", *argv])
        with pytest.raises(SystemExit) as exc:
            cli.main()
        assert exc.value.code == 0

    out = capsys.readouterr().out
    assert "Your verification amount is:" in out
    assert f"Wallet: {wallet}" in out
    assert "Pending verifications: 1" in out
