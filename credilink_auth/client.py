"""
credilink_auth/client.py

Caller side of the wallet login: what the browser app does, in Python.

Flow:
1. provider.request_accounts()          -> pick the first account
2. provider.request_chain_id()          -> remembered for the profile
3. POST /nonce {address}                -> nonce
4. provider.sign_message(address, nonce)   (personal_sign, off-server)
5. POST /verify {address, signature, role} -> identity + session token
6. later calls carry "Authorization: Bearer <token>"

The wallet provider is an external capability. LocalWalletProvider wraps an
eth_account key so scripts and tests can log in without a browser wallet.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct

from .errors import AuthError, ProviderUnavailable


class WalletProvider(ABC):
    @abstractmethod
    def request_accounts(self) -> List[str]:
        ...

    @abstractmethod
    def request_chain_id(self) -> int:
        ...

    @abstractmethod
    def sign_message(self, address: str, message: str) -> str:
        """Return a 0x-prefixed personal_sign signature."""


class LocalWalletProvider(WalletProvider):
    def __init__(self, private_key: Any, chain_id: int = 1):
        self.account = Account.from_key(private_key)
        self.chain_id = chain_id

    def request_accounts(self) -> List[str]:
        return [self.account.address]

    def request_chain_id(self) -> int:
        return self.chain_id

    def sign_message(self, address: str, message: str) -> str:
        if address.lower() != self.account.address.lower():
            raise ValueError("unknown account")
        signed = self.account.sign_message(encode_defunct(text=message))
        return "0x" + bytes(signed.signature).hex()


class LoginFailed(AuthError):
    """Server rejected the login; code/status mirror the server's error."""

    def __init__(self, code: str, message: str, status_code: int):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


@dataclass
class LoginSession:
    identity: Dict[str, Any]
    token: str
    expires_at: int
    created: bool
    chain_id: Optional[int] = None


class LoginClient:
    def __init__(self, http: httpx.Client, provider: Optional[WalletProvider] = None):
        self.http = http
        self.provider = provider
        self.session: Optional[LoginSession] = None

    def _provider(self) -> WalletProvider:
        if self.provider is None:
            raise ProviderUnavailable("No wallet provider detected. Please install MetaMask.")
        return self.provider

    def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        resp = self.http.request(method, path, **kwargs)
        data = resp.json()
        if resp.status_code >= 400:
            err = data.get("error") if isinstance(data, dict) else None
            if isinstance(err, dict):
                raise LoginFailed(err.get("code", "Error"), err.get("message", ""), resp.status_code)
            raise LoginFailed("HTTPError", str(data)[:200], resp.status_code)
        return data

    def _auth_headers(self) -> Dict[str, str]:
        if self.session is None:
            raise LoginFailed("SessionInvalid", "not logged in", 401)
        return {"Authorization": f"Bearer {self.session.token}"}

    def login(self, role: Optional[str] = None) -> LoginSession:
        provider = self._provider()
        accounts = provider.request_accounts()
        if not accounts:
            raise ProviderUnavailable("No accounts found")
        address = accounts[0]
        chain_id = provider.request_chain_id()

        challenge = self._call("POST", "/nonce", json={"address": address})
        signature = provider.sign_message(address, challenge["nonce"])

        body: Dict[str, Any] = {"address": address, "signature": signature, "chain_id": chain_id}
        if role is not None:
            body["role"] = role
        data = self._call("POST", "/verify", json=body)

        self.session = LoginSession(
            identity=data["identity"],
            token=data["session_token"],
            expires_at=data["expires_at"],
            created=data["created"],
            chain_id=chain_id,
        )
        return self.session

    def me(self) -> Dict[str, Any]:
        return self._call("GET", "/me", headers=self._auth_headers())

    def update_profile(self, **fields) -> Dict[str, Any]:
        identity = self._call("PATCH", "/me", json=fields, headers=self._auth_headers())
        if self.session is not None:
            self.session.identity = identity
        return identity

    def switch_chain(self, chain_id: int) -> Dict[str, Any]:
        identity = self._call("POST", "/me/chain", json={"chain_id": chain_id}, headers=self._auth_headers())
        if self.session is not None:
            self.session.identity = identity
            self.session.chain_id = chain_id
        return identity

    def logout(self) -> None:
        self._call("POST", "/logout", headers=self._auth_headers())
        self.session = None
