"""Process-wide escrow settings loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .cell import Cell
from .client import ToncenterClient
from .config import DEFAULT_REQUEST_TIMEOUT, DEFAULT_TONCENTER_ENDPOINT
from .deployment import load_code_cell
from .errors import ErrorCode, EscrowError
from .messages import KeyPair, keypair_from_secret_key
from .types import Address, CommonDealPart, to_nano


@dataclass
class EscrowSettings:
    """Settings for the guarantor process."""
    # Read call
    toncenter_endpoint: str = DEFAULT_TONCENTER_ENDPOINT
    toncenter_api_key: Optional[str] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    # Deployment parameters
    guarantor_secret_key: Optional[bytes] = None
    fee_gainer: Optional[Address] = None
    deal_code_path: Optional[str] = None

    # New deals
    fee: int = 0
    deals_expire_hours: int = 72

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "EscrowSettings":
        """Load settings from environment variables."""
        env = os.environ if env is None else env
        settings = cls()

        settings.toncenter_endpoint = env.get("TONCENTER_ENDPOINT") or DEFAULT_TONCENTER_ENDPOINT
        settings.toncenter_api_key = env.get("TONCENTER_API_KEY") or None
        settings.deal_code_path = env.get("DEAL_CODE_BOC") or None

        try:
            settings.request_timeout = float(env.get("REQUEST_TIMEOUT") or DEFAULT_REQUEST_TIMEOUT)
            settings.deals_expire_hours = int(env.get("DEALS_EXPIRE_HOURS") or settings.deals_expire_hours)
        except ValueError as exc:
            raise EscrowError(ErrorCode.INVALID_CONFIG, f"invalid numeric setting: {exc}") from exc

        if env.get("GUARANTOR_SECRET_KEY"):
            try:
                settings.guarantor_secret_key = bytes.fromhex(env["GUARANTOR_SECRET_KEY"])
            except ValueError as exc:
                raise EscrowError(ErrorCode.INVALID_CONFIG, "GUARANTOR_SECRET_KEY must be hex") from exc
        if env.get("FEE_GAINER"):
            settings.fee_gainer = Address.parse(env["FEE_GAINER"])
        if env.get("FEE"):
            settings.fee = to_nano(env["FEE"])

        return settings

    def guarantor_keypair(self) -> KeyPair:
        if self.guarantor_secret_key is None:
            raise EscrowError(ErrorCode.INVALID_CONFIG, "GUARANTOR_SECRET_KEY is not set")
        return keypair_from_secret_key(self.guarantor_secret_key)

    def common_deal_part(self) -> CommonDealPart:
        if self.fee_gainer is None:
            raise EscrowError(ErrorCode.INVALID_CONFIG, "FEE_GAINER is not set")
        return CommonDealPart(
            guarantor_public_key=self.guarantor_keypair().public_key,
            fee_gainer_address=self.fee_gainer,
        )

    def load_code(self) -> Cell:
        if self.deal_code_path is None:
            raise EscrowError(ErrorCode.INVALID_CONFIG, "DEAL_CODE_BOC is not set")
        return load_code_cell(self.deal_code_path)

    def client(self) -> ToncenterClient:
        return ToncenterClient(
            endpoint=self.toncenter_endpoint,
            api_key=self.toncenter_api_key,
            timeout=self.request_timeout,
        )
