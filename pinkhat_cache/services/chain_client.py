"""
Chain client for the GameManager and HatNFT contracts.

Provides the event source used by the synchronizer and the query
fallback path: historical log queries, polling subscriptions and the
point lookups (ranking direction, equipped hat, token URI).
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import aiohttp
import structlog
from web3 import AsyncWeb3, Web3

from pinkhat_cache.core.config import settings, ChainConfig
from pinkhat_cache.core.exceptions import ConfigurationError, SourceUnavailableError
from pinkhat_cache.services.event_parser import ChainEvent, EventType


logger = structlog.get_logger(__name__)


GAME_MANAGER_ABI: List[Dict[str, Any]] = [
    {
        "type": "event",
        "name": "GameSubmitted",
        "anonymous": False,
        "inputs": [
            {"name": "gameId", "type": "uint256", "indexed": True},
            {"name": "winner", "type": "address", "indexed": True},
            {"name": "playerCount", "type": "uint256", "indexed": False},
            {"name": "players", "type": "address[]", "indexed": False},
            {"name": "scores", "type": "uint256[]", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "ScoreOrderingChanged",
        "anonymous": False,
        "inputs": [
            {"name": "isDescendingOrder", "type": "bool", "indexed": False},
        ],
    },
    {
        "type": "function",
        "name": "isDescendingOrder",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "getEquippedHat",
        "stateMutability": "view",
        "inputs": [{"name": "player", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

HAT_NFT_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "tokenURI",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "string"}],
    },
]


class EventSource(ABC):
    """
    Read-only view of the authoritative event source.

    Every method raises SourceUnavailableError when the source cannot
    answer. Implementations only provide the primitive queries; the
    polling subscription is shared.
    """

    poll_interval: float = 5.0

    @abstractmethod
    async def get_block_number(self) -> int:
        """Current chain head."""

    @abstractmethod
    async def query_events_since(
        self,
        event_type: EventType,
        from_block: int,
        to_block: Optional[int] = None,
    ) -> List[ChainEvent]:
        """Events of one type in [from_block, to_block], ordered by (block, log index)."""

    @abstractmethod
    async def get_game_event(self, game_id: int) -> Optional[ChainEvent]:
        """The GameSubmitted event for one game id, if it exists."""

    @abstractmethod
    async def is_descending_order(self) -> bool:
        """Current ranking direction (True: higher scores win)."""

    @abstractmethod
    async def get_equipped_hat(self, address: str) -> int:
        """Hat token currently equipped by a player (0 = none)."""

    @abstractmethod
    async def get_token_uri(self, token_id: int) -> str:
        """Metadata URI for a hat token."""

    async def close(self) -> None:
        """Release transport resources."""

    async def subscribe(
        self,
        event_type: EventType,
        from_block: int,
        on_poll: Optional[Callable[[int], None]] = None,
    ) -> AsyncIterator[ChainEvent]:
        """
        Yield new events of one type as they appear, starting at from_block.

        Polls the chain head every poll_interval seconds. After each poll
        whose events have all been yielded, on_poll receives the head that
        was covered. Errors propagate to the consumer, which resubscribes
        past the last covered head.
        """
        next_block = from_block
        while True:
            head = await self.get_block_number()
            if head >= next_block:
                events = await self.query_events_since(event_type, next_block, head)
                for chain_event in events:
                    yield chain_event
                next_block = head + 1
                if on_poll is not None:
                    on_poll(head)
            await asyncio.sleep(self.poll_interval)


class Web3EventSource(EventSource):
    """
    Event source backed by an Ethereum JSON-RPC node through web3.py.
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        game_manager_address: Optional[str] = None,
        hat_nft_address: Optional[str] = None,
        timeout: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ):
        """Initialize the client with configuration."""
        rpc_config = ChainConfig.get_rpc_config()
        self.rpc_url = rpc_url or rpc_config["endpoint"]
        self.timeout = timeout or rpc_config["timeout"]
        self.poll_interval = poll_interval if poll_interval is not None else settings.indexer_poll_interval
        self.logger = logger.bind(service="chain_client")

        game_manager_address = game_manager_address or rpc_config["game_manager"]
        if not game_manager_address or game_manager_address == ChainConfig.ZERO_ADDRESS:
            raise ConfigurationError("GAME_MANAGER_ADDRESS is not configured")

        self.w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                self.rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=self.timeout)},
            )
        )
        self.game_manager = self.w3.eth.contract(
            address=Web3.to_checksum_address(game_manager_address),
            abi=GAME_MANAGER_ABI,
        )

        hat_nft_address = hat_nft_address or rpc_config["hat_nft"]
        self.hat_nft = (
            self.w3.eth.contract(address=Web3.to_checksum_address(hat_nft_address), abi=HAT_NFT_ABI)
            if hat_nft_address else None
        )

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the provider's HTTP session."""
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()

    async def _call(self, description: str, awaitable, **context):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning("RPC call failed", call=description, error=str(e), **context)
            raise SourceUnavailableError(
                f"Failed to {description}: {e}",
                {"call": description, **context}
            ) from e

    async def get_block_number(self) -> int:
        return await self._call("get block number", self.w3.eth.get_block_number())

    def _contract_event(self, event_type: EventType):
        return getattr(self.game_manager.events, event_type.value)()

    async def query_events_since(
        self,
        event_type: EventType,
        from_block: int,
        to_block: Optional[int] = None,
    ) -> List[ChainEvent]:
        logs = await self._call(
            "query events",
            self._contract_event(event_type).get_logs(
                from_block=from_block,
                to_block=to_block if to_block is not None else "latest",
            ),
            event_type=event_type.value,
            from_block=from_block,
            to_block=to_block,
        )
        events = [self._to_chain_event(event_type, log) for log in logs]
        return sorted(events, key=lambda e: e.ordering_key)

    async def get_game_event(self, game_id: int) -> Optional[ChainEvent]:
        logs = await self._call(
            "query game event",
            self._contract_event(EventType.GAME_SUBMITTED).get_logs(
                from_block=settings.indexer_start_block,
                to_block="latest",
                argument_filters={"gameId": game_id},
            ),
            game_id=game_id,
        )
        if not logs:
            return None
        return self._to_chain_event(EventType.GAME_SUBMITTED, logs[0])

    async def is_descending_order(self) -> bool:
        return bool(await self._call(
            "read ranking direction",
            self.game_manager.functions.isDescendingOrder().call(),
        ))

    async def get_equipped_hat(self, address: str) -> int:
        return int(await self._call(
            "read equipped hat",
            self.game_manager.functions.getEquippedHat(Web3.to_checksum_address(address)).call(),
            address=address,
        ))

    async def get_token_uri(self, token_id: int) -> str:
        if self.hat_nft is None:
            raise SourceUnavailableError("HAT_NFT_ADDRESS is not configured", {"token_id": token_id})
        return await self._call(
            "read token URI",
            self.hat_nft.functions.tokenURI(token_id).call(),
            token_id=token_id,
        )

    @staticmethod
    def _to_chain_event(event_type: EventType, log) -> ChainEvent:
        args = dict(log["args"])
        payload: Dict[str, Any] = {}
        for key, value in args.items():
            payload[key] = list(value) if isinstance(value, (list, tuple)) else value

        sequence_id = payload.get("gameId") if event_type is EventType.GAME_SUBMITTED else None
        return ChainEvent(
            event_type=event_type,
            sequence_id=sequence_id,
            block_number=log["blockNumber"],
            transaction_hash=Web3.to_hex(log["transactionHash"]),
            log_index=log.get("logIndex", 0),
            payload=payload,
        )


# Global client instance
_client: Optional[Web3EventSource] = None


def get_chain_client() -> Web3EventSource:
    """Get or create the global chain client instance."""
    global _client
    if _client is None:
        _client = Web3EventSource()
    return _client


async def close_chain_client() -> None:
    """Close the global chain client instance."""
    global _client
    if _client is not None:
        await _client.close()
        _client = None
