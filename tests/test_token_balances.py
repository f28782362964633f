from conftest import HOLDER, MINT, TREASURY
from solana_token_gate.token_balances import (
    SkippedTransaction,
    TransferDeltas,
    extract_transfer_deltas,
    is_valid_wallet,
    ui_amount,
)


def _entry(owner, amount, mint=MINT):
    return {"owner": owner, "mint": mint, "uiTokenAmount": {"uiAmount": amount}}


def _tx(pre, post, slot=321, block_time=1_700_000_000):
    return {
        "slot": slot,
        "blockTime": block_time,
        "meta": {"preTokenBalances": pre, "postTokenBalances": post},
    }


def test_deltas_from_balance_snapshots():
    tx = _tx(
        pre=[_entry(HOLDER, 100.5), _entry(TREASURY, 10.0)],
        post=[_entry(HOLDER, 100.499995), _entry(TREASURY, 10.000005)],
    )

    deltas = extract_transfer_deltas("sig", tx, HOLDER, TREASURY, MINT)

    assert isinstance(deltas, TransferDeltas)
    assert deltas.slot == 321
    assert deltas.block_time == 1_700_000_000
    assert abs(deltas.user_delta - 0.000005) < 1e-9
    assert abs(deltas.treasury_delta - 0.000005) < 1e-9


def test_missing_treasury_pre_counts_as_zero():
    tx = _tx(pre=[_entry(HOLDER, 1.0)], post=[_entry(HOLDER, 0.99), _entry(TREASURY, 0.01)])

    deltas = extract_transfer_deltas("sig", tx, HOLDER, TREASURY, MINT)

    assert abs(deltas.treasury_delta - 0.01) < 1e-12


def test_missing_meta_is_skipped():
    assert extract_transfer_deltas("sig", None, HOLDER, TREASURY, MINT) == SkippedTransaction(
        "sig", "missing meta"
    )
    assert extract_transfer_deltas("sig", {"slot": 1, "meta": None}, HOLDER, TREASURY, MINT).reason == "missing meta"


def test_missing_required_snapshots_are_named():
    tx = _tx(pre=[_entry(TREASURY, 1.0)], post=[_entry(HOLDER, 1.0)])

    skipped = extract_transfer_deltas("sig", tx, HOLDER, TREASURY, MINT)

    assert isinstance(skipped, SkippedTransaction)
    assert skipped.reason == "missing userPre, treasuryPost"


def test_other_mints_are_ignored():
    other = "So11111111111111111111111111111111111111112"
    tx = _tx(
        pre=[_entry(HOLDER, 5.0, mint=other), _entry(TREASURY, 0.0, mint=other)],
        post=[_entry(HOLDER, 4.0, mint=other), _entry(TREASURY, 1.0, mint=other)],
    )

    assert isinstance(extract_transfer_deltas("sig", tx, HOLDER, TREASURY, MINT), SkippedTransaction)


def test_ui_amount_falls_back_to_string():
    assert ui_amount({"uiTokenAmount": {"uiAmount": None, "uiAmountString": "0.000004217"}}) == 0.000004217
    assert ui_amount({"uiTokenAmount": {"uiAmount": None}}) == 0.0
    assert ui_amount({}) == 0.0


def test_wallet_validation():
    assert is_valid_wallet(HOLDER)
    assert is_valid_wallet("11111111111111111111111111111111")
    assert not is_valid_wallet("not-a-wallet-0OIl")
    assert not is_valid_wallet("abc")
