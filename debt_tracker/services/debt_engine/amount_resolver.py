"""
Amount Resolver

Turns one CandidateTransaction into a SignedDelta for its sender.

Resolution order:
1. Receipt Transfer events of the settlement asset: received - sent.
2. Call input word named by the MethodSpec, scaled and signed.
3. Nothing: the transaction is dropped with a log line.

No retries happen here; a failed lookup just moves on to the next path.
"""

import logging
from typing import Dict, List, Optional

from ...config.lending_config import SETTLEMENT_ASSET_ADDRESS, TRANSFER_TOPIC
from .method_catalog import MethodCatalog, decode_word
from .models import (
    CandidateTransaction, DeltaSign, DeltaSource, SignedDelta, TransferEvent,
    normalize_address,
)

logger = logging.getLogger(__name__)


def _topic_to_address(topic: str) -> str:
    return normalize_address('0x' + str(topic)[-40:])


def extract_transfer_events(
    receipt: Dict, token: str, transfer_topic: str = TRANSFER_TOPIC,
) -> List[TransferEvent]:
    """ERC20 Transfer events emitted by `token` in a normalized receipt."""
    token = normalize_address(token)
    transfer_topic = transfer_topic.lower()
    events = []

    for log in receipt.get('logs', []) or []:
        if normalize_address(log.get('address')) != token:
            continue
        topics = log.get('topics') or []
        if len(topics) < 3 or str(topics[0]).lower() != transfer_topic:
            continue

        data_hex = str(log.get('data') or '0x')
        if data_hex.startswith('0x'):
            data_hex = data_hex[2:]
        if len(data_hex) < 64:
            logger.debug(f"Skipping Transfer log without a full amount word: {log.get('data')!r}")
            continue
        try:
            amount = int(data_hex[:64], 16)
        except ValueError:
            logger.debug(f"Skipping Transfer log with non-hex data: {log.get('data')!r}")
            continue

        events.append(TransferEvent(
            token=token,
            from_address=_topic_to_address(topics[1]),
            to_address=_topic_to_address(topics[2]),
            amount=amount,
        ))

    return events


class AmountResolver:
    """Resolves the signed balance change a tracked call caused for its sender"""

    def __init__(
        self,
        catalog: MethodCatalog,
        node_client,
        settlement_asset: str = SETTLEMENT_ASSET_ADDRESS,
        transfer_topic: str = TRANSFER_TOPIC,
    ):
        self.catalog = catalog
        self.node_client = node_client
        self.settlement_asset = normalize_address(settlement_asset)
        self.transfer_topic = transfer_topic.lower()

    def reconcile_transfers(self, wallet: str, receipt: Dict) -> Optional[int]:
        """
        received - sent of the settlement asset for `wallet`.
        None when no Transfer event touches the wallet.
        """
        wallet = normalize_address(wallet)
        events = extract_transfer_events(receipt, self.settlement_asset, self.transfer_topic)

        touched = False
        net = 0
        for event in events:
            if event.to_address == wallet:
                net += event.amount
                touched = True
            if event.from_address == wallet:
                net -= event.amount
                touched = True

        return net if touched else None

    def resolve(self, tx: CandidateTransaction) -> Optional[SignedDelta]:
        spec = self.catalog.lookup(tx.selector)
        if spec is None:
            logger.debug(f"{tx.tx_hash}: selector {tx.selector} not tracked")
            return None

        receipt = None
        try:
            receipt = self.node_client.get_transaction_receipt(tx.tx_hash)
        except Exception as e:
            logger.warning(f"{tx.tx_hash}: receipt unavailable ({e}), decoding input instead")

        if receipt is not None:
            if receipt.get('status') == 0:
                logger.info(f"{tx.tx_hash}: reverted on-chain, skipped")
                return None
            net = self.reconcile_transfers(tx.sender, receipt)
            if net is not None:
                return SignedDelta(
                    wallet=tx.sender,
                    amount=net,
                    tx_hash=tx.tx_hash,
                    source=DeltaSource.TRANSFER_RECONCILIATION,
                )

        amount = decode_word(tx.input_data, spec.amount_field)
        if amount is not None:
            signed = amount * spec.scale
            if spec.sign == DeltaSign.DECREASE:
                signed = -signed
            return SignedDelta(
                wallet=tx.sender,
                amount=signed,
                tx_hash=tx.tx_hash,
                source=DeltaSource.INPUT_DECODE,
            )

        logger.info(f"{tx.tx_hash}: could not resolve {spec.name} amount, dropped")
        return None
