"""Settlement dispatch tests."""

from decimal import Decimal

import pytest
import pytest_asyncio

from stablewallet.errors import InsufficientBalanceError, VerificationError
from stablewallet.ledger.models import TransactionType
from stablewallet.services.settlement import (
    OffChainSettlement,
    OnChainSettlement,
    SettlementRequest,
    SettlementService,
)

from conftest import DEPOSITOR, SWAP_ADDRESS, USDC_ADDRESS, USDT_ADDRESS

STRANGER = "0x" + "1a" * 20
RECIPIENT = "0x" + "2b" * 20


@pytest_asyncio.fixture
async def owned(key_service, wallet) -> str:
    """First USDT address of ``u1``'s wallet, which is also its default."""
    await key_service.get_or_create_mnemonic("u1", wallet.id, "POLYGON_AMOY")
    derived = await key_service.derive_next_address("u1", "USDT", "POLYGON_AMOY")
    return derived.address


def _topup(wallet_id, tx_hash, amount="25", to_address=None) -> SettlementRequest:
    return SettlementRequest(
        wallet_id=wallet_id,
        type=TransactionType.TOPUP,
        asset="USDT",
        amount=Decimal(amount),
        mode=OnChainSettlement(tx_hash=tx_hash, to_address=to_address),
        principal_id="u1",
    )


def _swap(wallet_id, tx_hash, from_address=None, to_asset="USDC", amount_out=None) -> SettlementRequest:
    return SettlementRequest(
        wallet_id=wallet_id,
        type=TransactionType.SWAP,
        asset="USDT",
        amount=Decimal("10"),
        to_asset=to_asset,
        amount_out=amount_out,
        mode=OnChainSettlement(tx_hash, from_address=from_address),
    )


class TestOnChainSettlement:
    """Tests for settlements backed by a verified transaction hash."""

    @pytest.mark.asyncio
    async def test_topup_verified_and_credited(self, settlement, chain, ledger, wallet, owned):
        receipt = chain.add_token_transfer(USDT_ADDRESS, DEPOSITOR, owned, 25_000_000)

        result = await settlement.settle(_topup(wallet.id, receipt.tx_hash, to_address=owned))

        assert result.duplicate is False
        assert result.transaction.type == TransactionType.TOPUP
        assert result.transaction.tx_hash == receipt.tx_hash
        assert result.transaction.from_address == DEPOSITOR
        assert result.transaction.to_address == owned
        assert result.transaction.chain_id == 80002
        assert result.transaction.meta["mode"] == "onchain"
        assert await ledger.get_balance(wallet.id, "USDT") == Decimal("25.00")

    @pytest.mark.asyncio
    async def test_topup_defaults_to_wallet_address(self, settlement, chain, ledger, wallet, owned):
        """Test that a topup without a recipient verifies against the default address."""
        receipt = chain.add_token_transfer(USDT_ADDRESS, DEPOSITOR, owned, 25_000_000)

        result = await settlement.settle(_topup(wallet.id, receipt.tx_hash))

        assert result.transaction.to_address == owned
        assert await ledger.get_balance(wallet.id, "USDT") == Decimal("25.00")

    @pytest.mark.asyncio
    async def test_topup_without_any_wallet_address(self, settlement, chain, wallet):
        receipt = chain.add_token_transfer(USDT_ADDRESS, DEPOSITOR, STRANGER, 25_000_000)

        with pytest.raises(VerificationError) as exc:
            await settlement.settle(_topup(wallet.id, receipt.tx_hash))
        assert exc.value.field == "to"

    @pytest.mark.asyncio
    async def test_topup_to_foreign_address_rejected(self, settlement, chain, ledger, key_service, wallet, owned):
        """Test that a deposit to another principal's address cannot credit this wallet."""
        await key_service.provision_principal("u2", "POLYGON_AMOY")
        foreign = (await key_service.derive_next_address("u2", "USDT", "POLYGON_AMOY")).address
        receipt = chain.add_token_transfer(USDT_ADDRESS, DEPOSITOR, foreign, 25_000_000)

        with pytest.raises(VerificationError) as exc:
            await settlement.settle(_topup(wallet.id, receipt.tx_hash, to_address=foreign))

        assert exc.value.field == "to"
        assert await ledger.get_transaction_by_hash(receipt.tx_hash) is None
        assert await ledger.get_balance(wallet.id, "USDT") == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_topup_to_unknown_address_rejected(self, settlement, chain, wallet, owned):
        receipt = chain.add_token_transfer(USDT_ADDRESS, DEPOSITOR, STRANGER, 25_000_000)

        with pytest.raises(VerificationError) as exc:
            await settlement.settle(_topup(wallet.id, receipt.tx_hash, to_address=STRANGER))
        assert exc.value.field == "to"

    @pytest.mark.asyncio
    async def test_resubmission_is_a_noop(self, settlement, chain, ledger, wallet, owned):
        """Test that settling the same hash twice credits once."""
        receipt = chain.add_token_transfer(USDT_ADDRESS, DEPOSITOR, owned, 25_000_000)

        first = await settlement.settle(_topup(wallet.id, receipt.tx_hash, to_address=owned))
        second = await settlement.settle(
            _topup(wallet.id, receipt.tx_hash.upper().replace("0X", "0x"), to_address=owned)
        )

        assert second.duplicate is True
        assert second.transaction.id == first.transaction.id
        assert await ledger.get_balance(wallet.id, "USDT") == Decimal("25.00")

    @pytest.mark.asyncio
    async def test_mismatched_amount_records_nothing(self, settlement, chain, ledger, wallet, owned):
        receipt = chain.add_token_transfer(USDT_ADDRESS, DEPOSITOR, owned, 25_000_000)

        with pytest.raises(VerificationError) as exc:
            await settlement.settle(_topup(wallet.id, receipt.tx_hash, amount="250", to_address=owned))

        assert exc.value.field == "amount"
        assert await ledger.get_transaction_by_hash(receipt.tx_hash) is None
        assert await ledger.get_balance(wallet.id, "USDT") == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_send_verified_and_debited(self, settlement, chain, ledger, wallet, owned):
        await ledger.credit(wallet.id, "USDC", Decimal("100"))
        receipt = chain.add_token_transfer(USDC_ADDRESS, owned, RECIPIENT, 30_000_000)

        result = await settlement.settle(
            SettlementRequest(
                wallet_id=wallet.id,
                type=TransactionType.SEND,
                asset="USDC",
                amount=Decimal("30"),
                fee=Decimal("0.25"),
                mode=OnChainSettlement(receipt.tx_hash, from_address=owned, to_address=RECIPIENT),
            )
        )

        assert result.transaction.to_address == RECIPIENT
        assert await ledger.get_balance(wallet.id, "USDC") == Decimal("69.75")

    @pytest.mark.asyncio
    async def test_send_from_foreign_address_rejected(self, settlement, chain, ledger, wallet, owned):
        """Test that another party's transfer cannot be claimed as this wallet's send."""
        await ledger.credit(wallet.id, "USDC", Decimal("100"))
        receipt = chain.add_token_transfer(USDC_ADDRESS, STRANGER, RECIPIENT, 30_000_000)

        with pytest.raises(VerificationError) as exc:
            await settlement.settle(
                SettlementRequest(
                    wallet_id=wallet.id,
                    type=TransactionType.SEND,
                    asset="USDC",
                    amount=Decimal("30"),
                    mode=OnChainSettlement(receipt.tx_hash, from_address=STRANGER, to_address=RECIPIENT),
                )
            )

        assert exc.value.field == "from"
        assert await ledger.get_balance(wallet.id, "USDC") == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_send_beyond_balance_rejected(self, settlement, chain, ledger, wallet, owned):
        receipt = chain.add_token_transfer(USDC_ADDRESS, owned, RECIPIENT, 30_000_000)

        with pytest.raises(InsufficientBalanceError):
            await settlement.settle(
                SettlementRequest(
                    wallet_id=wallet.id,
                    type=TransactionType.SEND,
                    asset="USDC",
                    amount=Decimal("30"),
                    mode=OnChainSettlement(receipt.tx_hash, from_address=owned, to_address=RECIPIENT),
                )
            )

        assert await ledger.get_transaction_by_hash(receipt.tx_hash) is None

    @pytest.mark.asyncio
    async def test_swap_uses_event_amount_out(self, settlement, chain, ledger, wallet, owned):
        """Test that amount_out and fee come from the Swap event."""
        await ledger.credit(wallet.id, "USDT", Decimal("50"))
        receipt = chain.add_swap(
            SWAP_ADDRESS, owned, USDT_ADDRESS, USDC_ADDRESS, 10_000_000, 9_900_000, fee=100_000
        )

        result = await settlement.settle(_swap(wallet.id, receipt.tx_hash, from_address=owned))

        assert result.transaction.amount_out == Decimal("9.90")
        assert result.transaction.fee == Decimal("0.00")
        assert result.transaction.meta["token_in"] == USDT_ADDRESS
        assert result.transaction.meta["fee"] == "0.10"
        assert await ledger.get_balance(wallet.id, "USDT") == Decimal("40.00")
        assert await ledger.get_balance(wallet.id, "USDC") == Decimal("9.90")

    @pytest.mark.asyncio
    async def test_swap_ignores_client_fee(self, settlement, chain, ledger, wallet, owned):
        """Test that the debit is exactly amountIn when the fee is already in amountOut."""
        await ledger.credit(wallet.id, "USDT", Decimal("10"))
        receipt = chain.add_swap(
            SWAP_ADDRESS, owned, USDT_ADDRESS, USDC_ADDRESS, 10_000_000, 9_900_000, fee=100_000
        )
        request = _swap(wallet.id, receipt.tx_hash)
        request.fee = Decimal("5")

        result = await settlement.settle(request)

        assert result.transaction.from_address == owned
        assert await ledger.get_balance(wallet.id, "USDT") == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_swap_amount_out_mismatch_rejected(self, settlement, chain, ledger, wallet, owned):
        await ledger.credit(wallet.id, "USDT", Decimal("50"))
        receipt = chain.add_swap(
            SWAP_ADDRESS, owned, USDT_ADDRESS, USDC_ADDRESS, 10_000_000, 9_900_000, fee=100_000
        )

        with pytest.raises(VerificationError) as exc:
            await settlement.settle(
                _swap(wallet.id, receipt.tx_hash, from_address=owned, amount_out=Decimal("1000"))
            )

        assert exc.value.field == "amount_out"
        assert await ledger.get_balance(wallet.id, "USDC") == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_swap_matching_client_amount_out_accepted(self, settlement, chain, ledger, wallet, owned):
        await ledger.credit(wallet.id, "USDT", Decimal("50"))
        receipt = chain.add_swap(
            SWAP_ADDRESS, owned, USDT_ADDRESS, USDC_ADDRESS, 10_000_000, 9_900_000
        )

        result = await settlement.settle(
            _swap(wallet.id, receipt.tx_hash, from_address=owned, amount_out=Decimal("9.9"))
        )

        assert result.transaction.amount_out == Decimal("9.90")

    @pytest.mark.asyncio
    async def test_swap_token_out_must_match_target_asset(self, settlement, chain, ledger, wallet, owned):
        """Test that a USDT to USDC swap cannot be booked as USDT to DAI."""
        await ledger.credit(wallet.id, "USDT", Decimal("50"))
        receipt = chain.add_swap(
            SWAP_ADDRESS, owned, USDT_ADDRESS, USDC_ADDRESS, 10_000_000, 9_900_000
        )

        with pytest.raises(VerificationError) as exc:
            await settlement.settle(_swap(wallet.id, receipt.tx_hash, from_address=owned, to_asset="DAI"))

        assert exc.value.field == "token_out"
        assert await ledger.get_balance(wallet.id, "DAI") == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_swap_token_in_must_match_asset(self, settlement, chain, ledger, wallet, owned):
        await ledger.credit(wallet.id, "USDT", Decimal("50"))
        receipt = chain.add_swap(
            SWAP_ADDRESS, owned, USDC_ADDRESS, USDC_ADDRESS, 10_000_000, 9_900_000
        )

        with pytest.raises(VerificationError) as exc:
            await settlement.settle(_swap(wallet.id, receipt.tx_hash, from_address=owned))
        assert exc.value.field == "token_in"

    @pytest.mark.asyncio
    async def test_swap_of_another_user_rejected(self, settlement, chain, ledger, wallet, owned):
        """Test that a swap made by a foreign address cannot be claimed, with or without from_address."""
        await ledger.credit(wallet.id, "USDT", Decimal("50"))
        receipt = chain.add_swap(
            SWAP_ADDRESS, STRANGER, USDT_ADDRESS, USDC_ADDRESS, 10_000_000, 9_900_000
        )

        with pytest.raises(VerificationError) as exc:
            await settlement.settle(_swap(wallet.id, receipt.tx_hash))
        assert exc.value.field == "user"

        with pytest.raises(VerificationError) as exc:
            await settlement.settle(_swap(wallet.id, receipt.tx_hash, from_address=STRANGER))
        assert exc.value.field == "from"

        assert await ledger.get_balance(wallet.id, "USDT") == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_onchain_without_verifier(self, ledger, wallet):
        service = SettlementService(ledger)

        with pytest.raises(VerificationError):
            await service.settle(_topup(wallet.id, "0x" + "ab" * 32))


class TestOffChainSettlement:
    """Tests for internally referenced settlements."""

    @pytest.mark.asyncio
    async def test_offchain_topup(self, settlement, ledger, wallet):
        request = SettlementRequest(
            wallet_id=wallet.id,
            type=TransactionType.TOPUP,
            asset="DAI",
            amount=Decimal("12.5"),
            mode=OffChainSettlement(reference="card-4242", memo="card top-up"),
        )

        first = await settlement.settle(request)
        second = await settlement.settle(request)

        assert first.transaction.tx_hash is None
        assert first.transaction.reference == "card-4242"
        assert first.transaction.meta["mode"] == "offchain"
        assert second.transaction.id != first.transaction.id
        assert await ledger.get_balance(wallet.id, "DAI") == Decimal("25.00")

    @pytest.mark.asyncio
    async def test_offchain_swap(self, settlement, ledger, wallet):
        await ledger.credit(wallet.id, "USDC", Decimal("20"))

        await settlement.settle(
            SettlementRequest(
                wallet_id=wallet.id,
                type=TransactionType.SWAP,
                asset="USDC",
                amount=Decimal("20"),
                to_asset="USDT",
                amount_out=Decimal("19.95"),
                mode=OffChainSettlement(reference="quote-1"),
            )
        )

        assert await ledger.get_balance(wallet.id, "USDC") == Decimal("0.00")
        assert await ledger.get_balance(wallet.id, "USDT") == Decimal("19.95")

    @pytest.mark.asyncio
    async def test_receive_cannot_be_client_settled(self, settlement, wallet):
        with pytest.raises(ValueError):
            await settlement.settle(
                SettlementRequest(
                    wallet_id=wallet.id,
                    type=TransactionType.RECEIVE,
                    asset="USDT",
                    amount=Decimal("1"),
                    mode=OffChainSettlement(),
                )
            )

    @pytest.mark.asyncio
    async def test_unknown_mode(self, settlement, wallet):
        with pytest.raises(TypeError):
            await settlement.settle(
                SettlementRequest(
                    wallet_id=wallet.id,
                    type=TransactionType.TOPUP,
                    asset="USDT",
                    amount=Decimal("1"),
                    mode="onchain",
                )
            )
