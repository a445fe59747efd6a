"""On-chain verification tests."""

from decimal import Decimal

import pytest

from stablewallet.chain.events import ZERO_ADDRESS
from stablewallet.chain.simulated import SimulatedChain
from stablewallet.errors import ConfigurationError, VerificationError
from stablewallet.services.verification import OnchainVerifier
from stablewallet.tokens import TokenRegistry

from conftest import DEPOSITOR, SWAP_ADDRESS, USDC_ADDRESS, USDT_ADDRESS

USER = "0x" + "1a" * 20
RECIPIENT = "0x" + "2b" * 20
NFT = "0x" + "3c" * 20


class TestReceiptChecks:
    """Tests for basic receipt verification."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tx_hash", ["", "0x1234", "ab" * 32, "0x" + "zz" * 32])
    async def test_malformed_hash(self, verifier, tx_hash):
        with pytest.raises(VerificationError) as exc:
            await verifier.verify_receipt(tx_hash)
        assert exc.value.field == "tx_hash"

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, verifier):
        with pytest.raises(VerificationError, match="not found") as exc:
            await verifier.verify_receipt("0x" + "00" * 32)
        assert exc.value.field == "tx_hash"

    @pytest.mark.asyncio
    async def test_reverted_transaction(self, verifier, chain):
        receipt = chain.add_token_transfer(USDT_ADDRESS, USER, RECIPIENT, 1, status=0)

        with pytest.raises(VerificationError) as exc:
            await verifier.verify_receipt(receipt.tx_hash)
        assert exc.value.field == "status"

    @pytest.mark.asyncio
    async def test_wrong_chain(self, tokens):
        chain = SimulatedChain(chain_id=137)
        receipt = chain.add_token_transfer(USDT_ADDRESS, USER, RECIPIENT, 1)
        verifier = OnchainVerifier(chain, expected_chain_id=80002, tokens=tokens)

        with pytest.raises(VerificationError) as exc:
            await verifier.verify_receipt(receipt.tx_hash)
        assert exc.value.field == "chain_id"

    @pytest.mark.asyncio
    async def test_uppercase_hash_accepted(self, verifier, chain):
        receipt = chain.add_token_transfer(USDT_ADDRESS, USER, RECIPIENT, 1)

        found = await verifier.verify_receipt("0x" + receipt.tx_hash[2:].upper())

        assert found.tx_hash == receipt.tx_hash


class TestTransferVerification:
    """Tests for deposit and send verification."""

    @pytest.mark.asyncio
    async def test_verify_deposit(self, verifier, chain):
        receipt = chain.add_token_transfer(USDT_ADDRESS, DEPOSITOR, USER, 25_000_000)

        proof = await verifier.verify_deposit(
            "POLYGON_AMOY", "USDT", receipt.tx_hash, USER.replace("1a", "1A"), Decimal("25")
        )

        assert proof.value == 25_000_000
        assert proof.to_address == USER
        assert proof.from_address == DEPOSITOR
        assert proof.block_number == 1000

    @pytest.mark.asyncio
    async def test_deposit_amount_mismatch(self, verifier, chain):
        receipt = chain.add_token_transfer(USDT_ADDRESS, DEPOSITOR, USER, 25_000_000)

        with pytest.raises(VerificationError, match="amount mismatch") as exc:
            await verifier.verify_deposit("POLYGON_AMOY", "USDT", receipt.tx_hash, USER, Decimal("25.01"))
        assert exc.value.field == "amount"

    @pytest.mark.asyncio
    async def test_deposit_recipient_mismatch(self, verifier, chain):
        receipt = chain.add_token_transfer(USDT_ADDRESS, DEPOSITOR, RECIPIENT, 25_000_000)

        with pytest.raises(VerificationError, match="to mismatch") as exc:
            await verifier.verify_deposit("POLYGON_AMOY", "USDT", receipt.tx_hash, USER, Decimal("25"))
        assert exc.value.field == "to"

    @pytest.mark.asyncio
    async def test_transfer_of_other_token(self, verifier, chain):
        """Test that a USDC transfer does not prove a USDT deposit."""
        receipt = chain.add_token_transfer(USDC_ADDRESS, DEPOSITOR, USER, 25_000_000)

        with pytest.raises(VerificationError) as exc:
            await verifier.verify_deposit("POLYGON_AMOY", "USDT", receipt.tx_hash, USER, Decimal("25"))
        assert exc.value.field == "token"

    @pytest.mark.asyncio
    async def test_verify_send(self, verifier, chain):
        receipt = chain.add_token_transfer(USDC_ADDRESS, USER, RECIPIENT, 1_500_000)

        proof = await verifier.verify_send(
            "POLYGON_AMOY", "USDC", receipt.tx_hash, USER, RECIPIENT, Decimal("1.50")
        )

        assert proof.value == 1_500_000

    @pytest.mark.asyncio
    async def test_send_sender_mismatch(self, verifier, chain):
        receipt = chain.add_token_transfer(USDC_ADDRESS, RECIPIENT, USER, 1_500_000)

        with pytest.raises(VerificationError, match="from mismatch") as exc:
            await verifier.verify_send(
                "POLYGON_AMOY", "USDC", receipt.tx_hash, USER, RECIPIENT, Decimal("1.50")
            )
        assert exc.value.field == "from"

    @pytest.mark.asyncio
    async def test_unconfigured_token_address(self, chain):
        """Test that an asset without a deployed contract cannot be verified."""
        verifier = OnchainVerifier(chain, tokens=TokenRegistry())
        receipt = chain.add_token_transfer(USDT_ADDRESS, DEPOSITOR, USER, 1)

        with pytest.raises(VerificationError) as exc:
            await verifier.verify_deposit("POLYGON_AMOY", "DAI", receipt.tx_hash, USER, Decimal("1"))
        assert exc.value.field == "asset"

        with pytest.raises(VerificationError) as exc:
            await verifier.verify_deposit("POLYGON_AMOY", "BTC", receipt.tx_hash, USER, Decimal("1"))
        assert exc.value.field == "asset"


class TestSwapVerification:
    """Tests for MockSwap event verification."""

    @pytest.mark.asyncio
    async def test_verify_swap(self, verifier, chain):
        receipt = chain.add_swap(
            SWAP_ADDRESS, USER, USDT_ADDRESS, USDC_ADDRESS, 10_000_000, 9_900_000, fee=100_000
        )

        proof = await verifier.verify_swap(receipt.tx_hash, SWAP_ADDRESS, USER, Decimal("10"))

        assert proof.user == USER
        assert proof.token_in == USDT_ADDRESS
        assert proof.token_out == USDC_ADDRESS
        assert (proof.amount_in, proof.amount_out, proof.fee) == (10_000_000, 9_900_000, 100_000)

    @pytest.mark.asyncio
    async def test_swap_amount_mismatch(self, verifier, chain):
        receipt = chain.add_swap(SWAP_ADDRESS, USER, USDT_ADDRESS, USDC_ADDRESS, 10_000_000, 9_900_000)

        with pytest.raises(VerificationError) as exc:
            await verifier.verify_swap(receipt.tx_hash, SWAP_ADDRESS, USER, Decimal("11"))
        assert exc.value.field == "amount_in"

    @pytest.mark.asyncio
    async def test_swap_user_mismatch(self, verifier, chain):
        receipt = chain.add_swap(SWAP_ADDRESS, USER, USDT_ADDRESS, USDC_ADDRESS, 10_000_000, 9_900_000)

        with pytest.raises(VerificationError) as exc:
            await verifier.verify_swap(receipt.tx_hash, SWAP_ADDRESS, RECIPIENT, Decimal("10"))
        assert exc.value.field == "user"

    @pytest.mark.asyncio
    async def test_swap_event_missing(self, verifier, chain):
        receipt = chain.add_token_transfer(USDT_ADDRESS, USER, SWAP_ADDRESS, 10_000_000)

        with pytest.raises(VerificationError) as exc:
            await verifier.verify_swap(receipt.tx_hash, SWAP_ADDRESS, USER, Decimal("10"))
        assert exc.value.field == "swap"

    @pytest.mark.asyncio
    async def test_swap_contract_not_configured(self, verifier):
        with pytest.raises(ConfigurationError):
            await verifier.verify_swap("0x" + "00" * 32, None, USER, Decimal("10"))


class TestNftMintVerification:
    """Tests for ERC-721 mint verification."""

    @pytest.mark.asyncio
    async def test_verify_mint(self, verifier, chain):
        receipt = chain.add_token_transfer(NFT, ZERO_ADDRESS, USER, 42, nft=True)

        proof = await verifier.verify_nft_mint(receipt.tx_hash, NFT, expected_to=USER)

        assert proof.value == 42
        assert proof.to_address == USER

    @pytest.mark.asyncio
    async def test_transfer_is_not_a_mint(self, verifier, chain):
        receipt = chain.add_token_transfer(NFT, RECIPIENT, USER, 42, nft=True)

        with pytest.raises(VerificationError) as exc:
            await verifier.verify_nft_mint(receipt.tx_hash, NFT)
        assert exc.value.field == "from"

    @pytest.mark.asyncio
    async def test_mint_recipient_mismatch(self, verifier, chain):
        receipt = chain.add_token_transfer(NFT, ZERO_ADDRESS, RECIPIENT, 42, nft=True)

        with pytest.raises(VerificationError) as exc:
            await verifier.verify_nft_mint(receipt.tx_hash, NFT, expected_to=USER)
        assert exc.value.field == "to"

    @pytest.mark.asyncio
    async def test_erc20_transfer_is_not_an_nft(self, verifier, chain):
        receipt = chain.add_token_transfer(NFT, ZERO_ADDRESS, USER, 42)

        with pytest.raises(VerificationError) as exc:
            await verifier.verify_nft_mint(receipt.tx_hash, NFT)
        assert exc.value.field == "token"
